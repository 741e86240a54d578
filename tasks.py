"""
Celery Tasks for ProtocolForge Background Processing
====================================================

This module contains Celery tasks for handling slow model work outside
the request cycle:
- Single protocol generation
- Batch protocol generation
- Safety revalidation after a customer's medical info changes

Tasks run the pipeline's async operations with asyncio.run and return
JSON-serializable dicts; results are tracked by the Celery result backend.
"""

from celery import Celery
import asyncio
import logging

from config import configure_logging, get_settings
from core.safety import InMemoryProtocolDirectory
from exceptions import ProtocolForgeError
from models import GenerationRequest
from pipeline import ProtocolPipeline, create_pipeline

settings = get_settings()
configure_logging(settings)

logger = logging.getLogger(__name__)

# Create Celery app
celery_app = Celery(
    "ProtocolForge",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
)


@celery_app.task(name="tasks.generate_protocol")
def generate_protocol_task(request_data: dict):
    """
    Celery task for generating one protocol.

    Args:
        request_data: GenerationRequest fields (camelCase or snake_case)

    Returns:
        The generated protocol as a camelCase dict
    """
    try:
        request = GenerationRequest.model_validate(request_data)
        pipeline = create_pipeline()

        protocol = asyncio.run(pipeline.agenerate(request))

        return protocol.model_dump(mode='json', by_alias=True)

    except ProtocolForgeError as e:
        logger.error(f"Protocol generation task failed: {e.message}")
        raise


@celery_app.task(name="tasks.generate_batch")
def generate_batch_task(requests_data: list[dict]):
    """
    Celery task for batch generation with partial results.

    Each entry of the returned list is either
    ``{"status": "completed", "protocol": {...}}`` or
    ``{"status": "failed", "error": {...}}``, in input order.
    """
    requests = [GenerationRequest.model_validate(data) for data in requests_data]
    pipeline = create_pipeline()

    outcomes = asyncio.run(pipeline.agenerate_batch_outcomes(requests))

    results = []
    for outcome in outcomes:
        if outcome.ok:
            results.append({
                "status": "completed",
                "protocol": outcome.protocol.model_dump(mode='json', by_alias=True)
            })
        else:
            results.append({"status": "failed", "error": outcome.error.to_dict()})

    failed = sum(1 for result in results if result["status"] == "failed")
    logger.info(f"Batch task finished: {len(results) - failed} completed, {failed} failed")
    return results


@celery_app.task(name="tasks.revalidate_customer")
def revalidate_customer_task(
    customer_id: str,
    protocols: dict,
    medications: list = None,
    health_conditions: list = None,
    allergies: list = None
):
    """
    Celery task for revalidating a customer's active protocols.

    Each run builds a fresh pipeline with an in-memory verdict store, so
    verdicts are never reused across runs; they persist only through the
    Celery result backend.

    Args:
        customer_id: Customer identifier
        protocols: Active protocol configurations keyed by protocol id
        medications: Current medications
        health_conditions: Current health conditions
        allergies: Known allergies

    Returns:
        List of new safety verdicts as camelCase dicts
    """
    directory = InMemoryProtocolDirectory(
        protocols=protocols,
        assignments={customer_id: list(protocols)}
    )
    pipeline = ProtocolPipeline(settings=settings, protocol_directory=directory)

    try:
        results = asyncio.run(pipeline.aupdate_customer_medical_info(
            customer_id,
            medications=medications,
            health_conditions=health_conditions,
            allergies=allergies,
        ))
    except ProtocolForgeError as e:
        logger.error(f"Revalidation for customer {customer_id} failed: {e.message}")
        raise

    return [result.model_dump(mode='json', by_alias=True) for result in results]
