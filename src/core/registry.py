"""Runtime registry for breaking circular imports.

This module holds the model table and the generation event source so that
routes can reach them without importing the main module.
"""

# Set by main.create_app() or the test harness
model_table = None
event_source = None


def set_runtime(table, source):
    """Set the global model table and event source."""
    global model_table, event_source
    model_table = table
    event_source = source


def get_model_table():
    """Get the global model table."""
    if model_table is None:
        raise RuntimeError("Model table not initialized. Did you call set_runtime?")
    return model_table


def get_event_source():
    """Get the global generation event source."""
    if event_source is None:
        raise RuntimeError("Event source not initialized. Did you call set_runtime?")
    return event_source
