"""
Generation Service - orchestrates image generation for slides.

Flow for one slide:
1. Resolve the effective visual style, merged entities and theme images
2. Build the prompt (@Name references resolved, length checked)
3. Load entity and theme reference images
4. Fan out `count` variants: provider call (with retry) -> normalize -> store

Partial success is not an error: each variant that fails is reported next to
the ones that succeeded, and written images are never rolled back.
"""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Mapping, Optional, Set, Tuple

from imagedeck.core.exceptions import BadRequestError, NotFoundError
from imagedeck.models.deck import Deck, Entity
from imagedeck.models.job import Job, JobProgress, JobSlideResult, JobType
from imagedeck.models.slide import GeneratedImage, Slide
from imagedeck.services.async_pool import execute_in_parallel, retry_with_backoff
from imagedeck.services.image_client import ImageProvider, ReferenceImage, guess_mime_type
from imagedeck.services.image_processor import ImageProcessor
from imagedeck.services.job_store import JobStore
from imagedeck.services.prompt_parser import build_full_prompt, get_referenced_entity_images
from imagedeck.services.storage import DocumentStore, compute_scene_styles, resolve_visual_style

logger = logging.getLogger(__name__)

MIN_VARIANT_COUNT = 1
MAX_VARIANT_COUNT = 10
MAX_TWEAK_PROMPT_LENGTH = 500
JOB_TYPES = ("generate-all", "generate-missing")
THEME_REFERENCE_LABEL = "Theme reference"


@dataclass
class FailedGeneration:
    """One variant that did not produce an image."""
    index: int
    error: str


@dataclass
class GenerationResult:
    images: List[GeneratedImage] = field(default_factory=list)
    failed: List[FailedGeneration] = field(default_factory=list)
    unknown_entities: List[str] = field(default_factory=list)
    # Set when no variant succeeded; the request itself still succeeds
    warning: Optional[str] = None


@dataclass
class _PreparedPrompt:
    prompt: str
    unknown_entities: List[str]
    references: List[ReferenceImage]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationService:
    """
    Generates slide images through the configured providers.

    Attributes:
        store: Document store (all disk access goes through it)
        job_store: Holds bulk job records
        providers: Image providers keyed by service name
        processor: Normalizes provider output to the stored JPEG format
    """

    def __init__(
        self,
        store: DocumentStore,
        job_store: JobStore,
        providers: Mapping[str, ImageProvider],
        processor: Optional[ImageProcessor] = None,
        concurrency: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_initial_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.job_store = job_store
        self.providers = providers
        self.processor = processor or ImageProcessor()
        self.concurrency = concurrency
        self.max_retries = max_retries
        self.retry_initial_delay = retry_initial_delay
        self._sleep = sleep
        self._background_tasks: Set[asyncio.Task] = set()

    # ===== VALIDATION =====

    def _resolve_defaults(self, count: Optional[int], service: Optional[str]) -> Tuple[int, str]:
        if count is None or service is None:
            user_settings = self.store.get_settings()
            count = user_settings.default_variant_count if count is None else count
            service = user_settings.default_service if service is None else service
        if not MIN_VARIANT_COUNT <= count <= MAX_VARIANT_COUNT:
            raise BadRequestError(
                f"Count must be between {MIN_VARIANT_COUNT} and {MAX_VARIANT_COUNT}"
            )
        return count, service

    def _get_provider(self, service: str) -> ImageProvider:
        provider = self.providers.get(service)
        if provider is None:
            raise BadRequestError(f"Unknown image service: {service}")
        if not provider.is_configured():
            raise BadRequestError(f"Image service '{service}' is not configured (missing API key)")
        return provider

    # ===== PROMPT & REFERENCES =====

    def _prepare_prompt(
        self,
        deck: Deck,
        slide: Slide,
        scene_style: Optional[str],
        entities: Mapping[str, Entity],
    ) -> _PreparedPrompt:
        visual_style = resolve_visual_style(slide, scene_style, deck.visual_style)
        built = build_full_prompt(visual_style, slide.image_description, entities, deck.theme_images)
        if built.unknown_entities:
            logger.warning(
                f"Unknown entities in slide {slide.id}: {', '.join(built.unknown_entities)}"
            )
        return _PreparedPrompt(
            prompt=built.prompt,
            unknown_entities=built.unknown_entities,
            references=self._load_references(deck, slide, entities),
        )

    def _load_references(
        self,
        deck: Deck,
        slide: Slide,
        entities: Mapping[str, Entity],
    ) -> List[ReferenceImage]:
        """Entity reference images first, then theme images. Missing files are skipped."""
        references: List[ReferenceImage] = []

        for ref in get_referenced_entity_images(slide.image_description, entities):
            try:
                data = self.store.read_entity_image(deck.id, ref.entity_name, ref.image_filename)
            except NotFoundError:
                logger.warning(f"Entity image {ref.image_filename} for @{ref.entity_name} is missing, skipped")
                continue
            references.append(
                ReferenceImage(data=data, mime_type=guess_mime_type(ref.image_filename), label=ref.display_name)
            )

        for filename in deck.theme_images:
            try:
                data = self.store.read_theme_image(deck.id, filename)
            except NotFoundError:
                logger.warning(f"Theme image {filename} is missing, skipped")
                continue
            references.append(
                ReferenceImage(data=data, mime_type=guess_mime_type(filename), label=THEME_REFERENCE_LABEL)
            )

        return references

    # ===== FAN-OUT =====

    async def _generate_variants(
        self,
        deck_id: str,
        slide_id: str,
        count: int,
        call: Callable[[], Awaitable[bytes]],
        service: str,
        prompt: str,
        source_image_id: Optional[str] = None,
    ) -> Tuple[List[GeneratedImage], List[FailedGeneration]]:
        async def _one_variant() -> GeneratedImage:
            raw = await retry_with_backoff(
                call,
                max_retries=self.max_retries,
                initial_delay=self.retry_initial_delay,
                sleep=self._sleep,
            )
            jpeg = await asyncio.to_thread(self.processor.normalize, raw)
            return self.store.add_generated_image(
                deck_id,
                slide_id,
                jpeg,
                service=service,
                prompt=prompt,
                source_image_id=source_image_id,
            )

        results = await execute_in_parallel([_one_variant] * count, self.concurrency)

        images = [r.data for r in results if r.ok]
        failed = [FailedGeneration(index=r.index, error=r.error) for r in results if not r.ok]
        logger.info(
            f"Slide {slide_id}: {len(images)}/{count} image(s) generated with {service}"
        )
        return images, failed

    @staticmethod
    def _warning_for(images: List[GeneratedImage], failed: List[FailedGeneration]) -> Optional[str]:
        if images or not failed:
            return None
        return f"All {len(failed)} generation attempt(s) failed: {failed[0].error}"

    # ===== PUBLIC OPERATIONS =====

    async def generate(
        self,
        deck_id: str,
        slide_id: str,
        count: Optional[int] = None,
        service: Optional[str] = None,
    ) -> GenerationResult:
        """
        Generate `count` image variants for one slide.

        Args:
            deck_id: Deck ID
            slide_id: Slide ID
            count: Variants to generate (default from settings)
            service: Image service (default from settings)

        Returns:
            GenerationResult with stored images, failed variants and unknown @names

        Raises:
            BadRequestError: Bad count, unknown/unconfigured service, or a
                no-images slide
            PromptValidationError: Nothing to render or prompt too long
            NotFoundError: Deck or slide missing
        """
        count, service = self._resolve_defaults(count, service)
        provider = self._get_provider(service)

        deck = self.store.get_deck(deck_id)
        if slide_id not in deck.slides:
            raise NotFoundError(f"Slide not found in deck: {slide_id}")
        slides = self.store.list_slides(deck_id)
        slide = next(s for s in slides if s.id == slide_id)
        if slide.no_images:
            raise BadRequestError(
                'This slide is marked as "no images". Remove this flag to generate images.'
            )

        scene_style = compute_scene_styles(slides).get(slide_id)
        entities = self.store.get_merged_entities(deck_id)
        prepared = self._prepare_prompt(deck, slide, scene_style, entities)
        logger.info(
            f"Generating {count} image(s) for slide {slide_id} with {service} "
            f"({len(prepared.references)} reference image(s))"
        )

        references = prepared.references or None
        images, failed = await self._generate_variants(
            deck_id,
            slide_id,
            count,
            lambda: provider.generate(prepared.prompt, references),
            service,
            prepared.prompt,
        )
        return GenerationResult(
            images=images,
            failed=failed,
            unknown_entities=prepared.unknown_entities,
            warning=self._warning_for(images, failed),
        )

    async def tweak(
        self,
        deck_id: str,
        slide_id: str,
        image_id: str,
        prompt: str,
        count: Optional[int] = None,
    ) -> GenerationResult:
        """
        Generate edited variants of an existing image with the service that
        produced it. New images carry `source_image_id`.
        """
        prompt = (prompt or "").strip()
        if not prompt or len(prompt) > MAX_TWEAK_PROMPT_LENGTH:
            raise BadRequestError(
                f"Tweak prompt must be between 1 and {MAX_TWEAK_PROMPT_LENGTH} characters"
            )

        slide = self.store.get_slide(deck_id, slide_id)
        source = slide.find_image(image_id)
        if source is None:
            raise NotFoundError(f"Source image not found: {image_id}")

        count, _ = self._resolve_defaults(count, source.service)
        provider = self._get_provider(source.service)
        source_bytes = self.store.get_image_path(deck_id, slide_id, image_id).read_bytes()

        images, failed = await self._generate_variants(
            deck_id,
            slide_id,
            count,
            lambda: provider.edit(source_bytes, prompt),
            source.service,
            prompt,
            source_image_id=image_id,
        )
        return GenerationResult(images=images, failed=failed, warning=self._warning_for(images, failed))

    async def start_bulk_job(
        self,
        deck_id: str,
        job_type: JobType,
        count: Optional[int] = None,
        service: Optional[str] = None,
    ) -> Job:
        """
        Start a background job generating images for many slides.

        `generate-all` targets every slide that allows images;
        `generate-missing` only those that have no images yet. The job is
        returned immediately; poll it with get_job_status.
        """
        if job_type not in JOB_TYPES:
            raise BadRequestError(f"Unknown job type: {job_type}")
        count, service = self._resolve_defaults(count, service)
        self._get_provider(service)

        slides = self.store.list_slides(deck_id)
        if not slides:
            raise BadRequestError("No slides in deck")

        targets = [
            s.id for s in slides
            if not s.no_images and (job_type == "generate-all" or not s.generated_images)
        ]

        job = Job(
            id=str(uuid.uuid4()),
            deck_id=deck_id,
            type=job_type,
            created_at=_utcnow(),
            config={"count": count, "service": service},
            progress=JobProgress(total=len(targets), pending=len(targets)),
        )
        self.job_store.create(job)

        if not targets:
            job.status = "completed"
            job.completed_at = _utcnow()
            self.job_store.update(job)
            logger.info(f"Job {job.id}: no slides need images")
            return job

        task = asyncio.create_task(self._run_bulk_job(job.model_copy(deep=True), targets))
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return job

    async def _run_bulk_job(self, job: Job, slide_ids: List[str]) -> None:
        """Process target slides one at a time; variants of a slide run in parallel."""
        count = job.config["count"]
        service = job.config["service"]
        logger.info(f"Job {job.id} started: {len(slide_ids)} slide(s), {count} variant(s) each")

        try:
            provider = self._get_provider(service)
            deck = self.store.get_deck(job.deck_id)
            entities = self.store.get_merged_entities(job.deck_id)
            scene_styles = compute_scene_styles(self.store.list_slides(job.deck_id))

            for slide_id in slide_ids:
                try:
                    slide = self.store.get_slide(job.deck_id, slide_id)
                    prepared = self._prepare_prompt(deck, slide, scene_styles.get(slide_id), entities)
                    references = prepared.references or None
                    images, failed = await self._generate_variants(
                        job.deck_id,
                        slide_id,
                        count,
                        lambda p=prepared.prompt, r=references: provider.generate(p, r),
                        service,
                        prepared.prompt,
                    )
                    if images:
                        result = JobSlideResult(slide_id=slide_id, status="success", image_count=len(images))
                    else:
                        result = JobSlideResult(
                            slide_id=slide_id,
                            status="failed",
                            error=failed[0].error if failed else "No images generated",
                        )
                except Exception as e:
                    logger.warning(f"Job {job.id}: slide {slide_id} failed: {e}")
                    result = JobSlideResult(slide_id=slide_id, status="failed", error=str(e))

                job.results.append(result)
                if result.status == "success":
                    job.progress.completed += 1
                else:
                    job.progress.failed += 1
                job.progress.pending -= 1
                self.job_store.update(job)

            job.status = "completed"
        except asyncio.CancelledError:
            job.status = "failed"
            job.error = "Job cancelled"
            raise
        except Exception as e:
            logger.error(f"Job {job.id} failed: {e}", exc_info=True)
            job.status = "failed"
            job.error = str(e)
        finally:
            job.completed_at = _utcnow()
            self.job_store.update(job)
            logger.info(
                f"Job {job.id} {job.status}: {job.progress.completed} succeeded, "
                f"{job.progress.failed} failed"
            )

    def get_job_status(self, job_id: str) -> Job:
        """Raises NotFoundError once the job has expired."""
        return self.job_store.get(job_id)

    async def wait_for_jobs(self) -> None:
        """Wait until every running bulk job has finished."""
        while self._background_tasks:
            await asyncio.wait(set(self._background_tasks))

    async def shutdown(self) -> None:
        """Cancel running bulk jobs."""
        tasks = list(self._background_tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.wait(tasks)
