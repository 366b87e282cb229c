import logging
from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from azure.monitor.opentelemetry.exporter import AzureMonitorTraceExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from edumessaging.configuration.config import Config

# Configure logger
logger = logging.getLogger("edumessaging")
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s'))
logger.addHandler(handler)
logger.setLevel(logging.DEBUG if Config.DEBUG else logging.INFO)

# The Cosmos SDK logs every request at INFO
logging.getLogger("azure").setLevel(logging.WARNING)

resource = Resource(attributes={
    SERVICE_NAME: "education-messages",
    SERVICE_VERSION: "1.0.0"
})

def setup_tracing():
    """Tracer for service spans; exported to Azure Monitor only when a connection string is set."""
    try:
        trace_provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(trace_provider)

        if Config.APPLICATIONINSIGHTS_CONNECTION_STRING:
            trace_provider.add_span_processor(
                BatchSpanProcessor(AzureMonitorTraceExporter(
                    connection_string=Config.APPLICATIONINSIGHTS_CONNECTION_STRING
                ))
            )
            logger.info("Exporting traces to Azure Monitor")
        else:
            logger.info("APPINSIGHTS_INSTRUMENTATIONKEY not set, spans are not exported")
    except Exception as e:
        logger.error(f"Failed to set up tracing: {str(e)}")
    return trace.get_tracer("edumessaging")

tracer = setup_tracing()

def instrument_fastapi(app):
    """Request spans for every route of the app."""
    try:
        FastAPIInstrumentor.instrument_app(app, excluded_urls="health")
        logger.info("FastAPI app instrumented")
    except Exception as e:
        logger.error(f"Failed to instrument FastAPI app: {str(e)}")

def start_span(name, context=None, kind=trace.SpanKind.INTERNAL, attributes=None):
    return tracer.start_as_current_span(name, context=context, kind=kind, attributes=attributes)

def _record(level, label, name, properties):
    try:
        with tracer.start_as_current_span(name) as span:
            for key, value in (properties or {}).items():
                span.set_attribute(key, str(value))
        logger.log(level, f"{label}: {name}", extra={"custom_properties": properties})
    except Exception as e:
        logger.error(f"Failed to record '{name}': {str(e)}")

def log_event(event_name, properties=None):
    _record(logging.INFO, "Event", event_name, properties)

def log_warning(event_name, properties=None):
    _record(logging.WARNING, "Warning", event_name, properties)

def log_exception(exception, properties=None):
    """Attach the exception to a span marked as failed and log it with its traceback."""
    try:
        with tracer.start_as_current_span("exception") as span:
            span.record_exception(exception)
            for key, value in (properties or {}).items():
                span.set_attribute(key, str(value))
            span.set_status(trace.StatusCode.ERROR, str(exception))
        logger.error(f"Exception: {type(exception).__name__}: {str(exception)}",
                     exc_info=exception, extra={"custom_properties": properties})
    except Exception as e:
        logger.error(f"Failed to log exception: {str(e)}")

def log_metric(metric_name, value, properties=None):
    try:
        with tracer.start_as_current_span(f"metric:{metric_name}") as span:
            span.set_attribute("metric.value", value)
            for key, val in (properties or {}).items():
                span.set_attribute(key, str(val))
        logger.info(f"Metric: {metric_name}={value}", extra={"custom_properties": properties})
    except Exception as e:
        logger.error(f"Failed to log metric '{metric_name}': {str(e)}")
