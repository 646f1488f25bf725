"""
Image endpoints: generation, tweaks, pinning, serving and bulk jobs.
"""
from fastapi import APIRouter, Depends

from imagedeck.api.v1.common import image_file_response
from imagedeck.core.deps import get_generation_service, get_store
from imagedeck.models.job import Job, JobType
from imagedeck.models.slide import Slide
from imagedeck.schemas.generation import GenerateRequest, GenerationOut, JobStartOut, TweakRequest
from imagedeck.services.generation import GenerationService
from imagedeck.services.storage import DocumentStore

router = APIRouter(tags=["images"])


@router.post("/decks/{deck_id}/slides/{slide_id}/generate", response_model=GenerationOut)
async def generate_images(
    deck_id: str,
    slide_id: str,
    data: GenerateRequest,
    service: GenerationService = Depends(get_generation_service),
):
    """
    Generate image variants for a slide.

    Partial failures are reported in `failed`; if every variant fails the
    response still succeeds and carries a `warning`.
    """
    result = await service.generate(deck_id, slide_id, count=data.count, service=data.service)
    return GenerationOut.from_result(result)


@router.post("/decks/{deck_id}/slides/{slide_id}/tweak", response_model=GenerationOut)
async def tweak_image(
    deck_id: str,
    slide_id: str,
    data: TweakRequest,
    service: GenerationService = Depends(get_generation_service),
):
    """
    Generate edited variants of an existing image.
    """
    result = await service.tweak(deck_id, slide_id, data.image_id, data.prompt, count=data.count)
    return GenerationOut.from_result(result)


@router.get("/decks/{deck_id}/slides/{slide_id}/images/{image_id}")
async def get_image(deck_id: str, slide_id: str, image_id: str, store: DocumentStore = Depends(get_store)):
    return image_file_response(store.get_image_path(deck_id, slide_id, image_id))


@router.put("/decks/{deck_id}/slides/{slide_id}/images/{image_id}/pin", response_model=Slide)
async def pin_image(deck_id: str, slide_id: str, image_id: str, store: DocumentStore = Depends(get_store)):
    return store.pin_image(deck_id, slide_id, image_id)


@router.delete("/decks/{deck_id}/slides/{slide_id}/images/{image_id}", response_model=Slide)
async def delete_image(deck_id: str, slide_id: str, image_id: str, store: DocumentStore = Depends(get_store)):
    """
    Delete an image. If it was pinned, the first remaining image is pinned.
    """
    return store.delete_image(deck_id, slide_id, image_id)


async def _start_job(
    deck_id: str,
    job_type: JobType,
    data: GenerateRequest,
    service: GenerationService,
) -> JobStartOut:
    job = await service.start_bulk_job(deck_id, job_type, count=data.count, service=data.service)
    message = None
    if job.progress.total == 0:
        message = "All slides already have images"
    return JobStartOut(job_id=job.id, status=job.status, total=job.progress.total, message=message)


@router.post("/decks/{deck_id}/generate-all", response_model=JobStartOut)
async def generate_all(
    deck_id: str,
    data: GenerateRequest,
    service: GenerationService = Depends(get_generation_service),
):
    """
    Start a background job generating images for every slide that allows them.
    """
    return await _start_job(deck_id, "generate-all", data, service)


@router.post("/decks/{deck_id}/generate-missing", response_model=JobStartOut)
async def generate_missing(
    deck_id: str,
    data: GenerateRequest,
    service: GenerationService = Depends(get_generation_service),
):
    """
    Start a background job generating images for slides that have none yet.
    """
    return await _start_job(deck_id, "generate-missing", data, service)


@router.get("/jobs/{job_id}", response_model=Job)
async def get_job(job_id: str, service: GenerationService = Depends(get_generation_service)):
    """
    Bulk job status. Jobs expire one hour after creation.
    """
    return service.get_job_status(job_id)
