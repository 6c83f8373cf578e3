"""
HTTP front-end for the Event Receiver service.

Exposes ``POST /api/v1/ingest``. A request carries one JSON event and the
customer tier in the ``X-Customer-Tier`` header; valid events from
allow-listed tiers are handed to the `BatchAccumulator` and acknowledged with
202 before they are stored.
"""

import logging

import pydantic
from flask import Flask, Response, jsonify, request

from .accumulator import BatchAccumulator
from .config import AppConfig
from .exceptions import InvalidEventError, UnauthorizedTierError
from .metrics import ACCEPTED_REQUESTS, INGEST_REQUESTS, ServiceMetrics
from .schemas import Event

logger = logging.getLogger(__name__)

CUSTOMER_TIER_HEADER = "X-Customer-Tier"


def _reply(status: str, message: str, status_code: int) -> tuple[Response, int]:
    return jsonify({"status": status, "message": message}), status_code


def _describe_validation_errors(error: pydantic.ValidationError) -> str:
    parts = []
    for detail in error.errors():
        field = ".".join(str(loc) for loc in detail["loc"]) or "event"
        parts.append(f"{field}: {detail['msg']}")
    return "; ".join(parts)


def _parse_event() -> Event:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise InvalidEventError("Request body must be a JSON object")
    try:
        return Event.model_validate(payload)
    except pydantic.ValidationError as e:
        raise InvalidEventError(
            _describe_validation_errors(e), context={"errors": e.errors(include_url=False)}
        ) from e


def create_app(
    accumulator: BatchAccumulator,
    config: AppConfig,
    metrics: ServiceMetrics,
) -> Flask:
    """Builds the Flask application around an existing accumulator."""
    app = Flask(__name__)

    @app.route("/api/v1/ingest", methods=["POST"])
    def ingest_event():
        metrics.increment(INGEST_REQUESTS)
        try:
            event = _parse_event()

            customer_tier = request.headers.get(CUSTOMER_TIER_HEADER)
            if not customer_tier:
                raise InvalidEventError(f"Missing required header {CUSTOMER_TIER_HEADER}")

            if not config.is_tier_allowed(customer_tier):
                raise UnauthorizedTierError(tier=customer_tier)

            metrics.increment(ACCEPTED_REQUESTS)
            logger.debug("Received event", extra={"tier": customer_tier})
            accumulator.admit(event, customer_tier)
            return _reply("success", "Event accepted", 202)

        except UnauthorizedTierError as e:
            logger.warning(
                "Rejected event from unauthorized customer tier",
                extra={"tier": e.context.get("tier")},
            )
            return _reply("error", e.message, 400)
        except InvalidEventError as e:
            logger.warning("Rejected invalid event", extra={"reason": e.message})
            return _reply("error", e.message, 400)
        except Exception as e:
            logger.exception("Error processing event")
            return _reply("error", str(e) or type(e).__name__, 500)

    return app
