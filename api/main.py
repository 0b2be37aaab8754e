"""
Operations API for the notification service.

This application provides:
1. Health and topic listing (/health, /topics)
2. Consumer statistics (/stats)
3. Raw publishing onto a topic and on-demand draining (/publish, /consume),
   for operating the pipeline without the platform
4. Demo scenarios (/demo/...)

Run with:
    uv run uvicorn api.main:app --reload

Then visit http://localhost:8000/docs for interactive API documentation.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from notifier.consumer import RecordOutcome
from notifier.demo import SCENARIOS, run_scenario
from notifier.registry import get_registry
from notifier.service import NotificationService
from shared.codec import encode
from shared.config import NotifierConfig, configure_logging
from shared.errors import BrokerUnavailable, MalformedPayload, UnknownTopic
from shared.topics import ChangeTopic, parse_topic

logger = logging.getLogger("ops_api")


# =============================================================================
# Models
# =============================================================================

class TopicInfo(BaseModel):
    """One entry of the topic taxonomy."""
    name: str
    entity_kind: str
    change_kind: str
    notifies: Optional[str] = Field(default=None, description="Party emailed, if any")
    fields: list[str] = Field(default_factory=list, description="Payload fields the rule reads")


class PublishRequest(BaseModel):
    """A raw entity snapshot to publish."""
    payload: dict[str, Any]
    key: Optional[str] = Field(default=None, description="Partition key; defaults to payload id")


class PublishResponse(BaseModel):
    topic: str
    partition: int
    offset: int
    envelope_id: str


class OutcomeInfo(BaseModel):
    topic: str
    partition: int
    offset: int
    state: str
    history: list[str]
    correlation_id: Optional[str] = None
    error_code: Optional[str] = None
    recipient: Optional[str] = None


class ConsumeResponse(BaseModel):
    processed: int
    outcomes: list[OutcomeInfo]


class DemoResult(BaseModel):
    """Result of running a demo scenario."""
    scenario: str
    notifications_sent: int
    outcomes: list[OutcomeInfo]
    messages: list[dict[str, Any]]
    stats: dict[str, int]


def _outcome_info(outcome: RecordOutcome) -> OutcomeInfo:
    return OutcomeInfo(
        topic=outcome.topic,
        partition=outcome.partition,
        offset=outcome.offset,
        state=outcome.state.value,
        history=[s.value for s in outcome.history],
        correlation_id=outcome.correlation_id,
        error_code=outcome.error_code,
        recipient=outcome.result.recipient if outcome.result else None,
    )


# =============================================================================
# Service state
# =============================================================================

# Module-level instance (would use proper DI in production)
_service: Optional[NotificationService] = None


def get_service() -> NotificationService:
    """Get the notification service instance."""
    global _service
    if _service is None:
        _service = NotificationService(config=NotifierConfig.from_env())
    return _service


def reset_api_state(service: Optional[NotificationService] = None) -> None:
    """Reset API state (for testing)."""
    global _service
    if _service is not None and _service is not service:
        _service.stop()
    _service = service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start consuming on startup; drain and leave the group on shutdown."""
    config = NotifierConfig.from_env()
    configure_logging(config.log_level)
    logging.info("Starting notification service API")
    service = get_service()
    service.start()
    yield
    logging.info("Shutting down")
    service.stop()


app = FastAPI(
    title="Change Notification Service",
    description="""
    Operations API for the freelance platform's change-notification pipeline.

    The platform publishes entity change events; this service consumes them,
    picks a notification rule per topic, and emails the right party.
    """,
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Endpoints
# =============================================================================

@app.get("/health", tags=["Health"])
def health_check():
    """Health check endpoint."""
    service = get_service()
    return {
        "status": "healthy",
        "service": "change-notification-service",
        "consuming": service.running,
    }


@app.get("/topics", response_model=list[TopicInfo], tags=["Topics"])
def list_topics():
    """The closed topic taxonomy and which party each topic notifies."""
    registry = get_registry()
    handled = set(registry.topics())
    result = []
    for topic in ChangeTopic:
        notifies = None
        fields: list[str] = []
        if topic in handled:
            notifies = registry.strategy_for(topic).kind.value
            fields = list(registry.fields_for(topic))
        result.append(TopicInfo(
            name=topic.wire_name,
            entity_kind=topic.entity_kind.value,
            change_kind=topic.change_kind.value,
            notifies=notifies,
            fields=fields,
        ))
    return result


@app.get("/stats", tags=["Operations"])
def get_stats():
    """Processed-record counts and consumer lag."""
    service = get_service()
    return {
        "records": service.stats(),
        "lag": service.broker.lag(service.config.group_id, service.consumer.topics),
        "emails_attempted": len(getattr(service.channel, "sent_messages", [])),
    }


@app.post("/publish/{topic}", response_model=PublishResponse, tags=["Operations"])
def publish(topic: str, request: PublishRequest):
    """Publish a raw snapshot onto a topic from the taxonomy."""
    try:
        resolved = parse_topic(topic)
        payload = encode(request.payload)
    except UnknownTopic as e:
        raise HTTPException(status_code=404, detail=e.message)
    except MalformedPayload as e:
        raise HTTPException(status_code=422, detail=e.message)

    key = request.key
    if key is None and "id" in request.payload:
        key = str(request.payload["id"])

    try:
        record = get_service().broker.send(resolved.wire_name, payload, key=key)
    except BrokerUnavailable as e:
        raise HTTPException(status_code=503, detail=e.message)
    return PublishResponse(
        topic=record.topic,
        partition=record.partition,
        offset=record.offset,
        envelope_id=record.envelope.envelope_id,
    )


@app.post("/consume", response_model=ConsumeResponse, tags=["Operations"])
def consume():
    """Process every waiting record now."""
    outcomes = get_service().drain()
    return ConsumeResponse(
        processed=len(outcomes),
        outcomes=[_outcome_info(o) for o in outcomes],
    )


@app.post("/demo/{scenario}", response_model=DemoResult, tags=["Demo"])
def demo(scenario: str):
    """Run a demo scenario on a fresh, isolated pipeline."""
    if scenario not in SCENARIOS:
        raise HTTPException(status_code=404, detail=f"Unknown scenario: {scenario}")

    report = run_scenario(scenario, get_service().config)
    return DemoResult(
        scenario=report.scenario,
        notifications_sent=report.notifications_sent,
        outcomes=[_outcome_info(o) for o in report.outcomes],
        messages=report.messages,
        stats=report.stats,
    )
