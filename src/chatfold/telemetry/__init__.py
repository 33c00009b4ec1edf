from opentelemetry import trace

TRACER_NAME = "chatfold"
TURN_SPAN_NAME = "chatfold.turn"


def get_tracer() -> trace.Tracer:
    return trace.get_tracer(TRACER_NAME)
