from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from iot_automations.api.automations import router as automations_router
from iot_automations.logging import configure_logging
from iot_automations.telemetry import setup_otel

app = FastAPI(title="iot_automations API")

configure_logging()
setup_otel(app)

app.include_router(automations_router)
app.include_router(automations_router, prefix="/api/v1")


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.head("/health")
def head_health():
    return Response(status_code=200)


@app.get("/metrics")
def metrics():
    data = generate_latest()
    return Response(content=data, media_type=CONTENT_TYPE_LATEST)
