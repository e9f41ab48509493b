#!/usr/bin/env python3
"""
Watermark Remover: interactive batch tool that cleans watermarks off JPEGs using AI.

For every JPEG in the input folder, the image is sent to a Gemini image-editing model, the
returned picture is re-encoded to JPEG, and the original EXIF/XMP/IPTC metadata is copied onto
it. An operator then reviews the result and can accept it, refine it with a comment, start over
from the original, or skip (and delete) the file.
The metadata copy can also be done with ExifTool manually:
    exiftool -TagsFromFile input/photo.jpg -All:All -overwrite_original output/photo.jpg

Requirements:
 - Exiftool installed and available in PATH (optional, metadata copy is skipped without it).
 - GEMINI_API_KEY set in the environment or in a .env file in the working directory.

"""
# ruff: noqa: PLR0913

import base64
import binascii
import contextlib
import os
import sys
import time
from collections.abc import Iterator, Mapping
from datetime import UTC, datetime
from enum import StrEnum
from io import BytesIO
from pathlib import Path
from typing import Annotated, Any, Literal, Protocol, Self

import httpx
from cyclopts import App, Parameter, validators
from dotenv import load_dotenv
from exiftool import ExifToolHelper  # type: ignore[attr-defined]
from exiftool.exceptions import ExifToolException
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from loguru import logger
from PIL import Image, UnidentifiedImageError
from pydantic import BaseModel, ConfigDict, Field
from rich.console import Console
from rich.markup import escape
from rich.prompt import Prompt


# Environment from ./.env, without overriding variables that are already set
load_dotenv(Path.cwd() / ".env")

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL", "OFF"]
API_KEY_ENV_VAR = "GEMINI_API_KEY"
PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"
JPEG_SIGNATURE = b"\xff\xd8\xff"
JPEG_EXTENSIONS = frozenset({".jpg", ".jpeg"})

# Configuration defaults
DEFAULT_INPUT_DIR = Path(os.getenv("INPUT_DIR", "input"))
DEFAULT_OUTPUT_DIR = Path(os.getenv("OUTPUT_DIR", "output"))
DEFAULT_MODEL_NAME = os.getenv("MODEL_NAME", "gemini-2.5-flash-image")
DEFAULT_JPEG_QUALITY = int(os.getenv("JPEG_QUALITY", "95"))
DEFAULT_BASE_PROMPT = os.getenv(
    "BASE_PROMPT",
    "Remove the watermark from this image. Keep everything else exactly as it is.",
)


# Cyclopts app
__version__ = "0.1.0"
app = App(
    name="watermark-remover",
    version=__version__,
)


class WatermarkRemoverError(Exception):
    """Base class for errors raised by the watermark remover."""


class ConfigError(WatermarkRemoverError):
    """Required configuration (such as the API key) is missing or invalid."""


class FilesystemError(WatermarkRemoverError):
    """A directory or file could not be read, written or deleted."""


class EditServiceError(WatermarkRemoverError):
    """The image-editing service request failed."""


class ImageEncodeError(WatermarkRemoverError):
    """The image returned by the service could not be re-encoded to JPEG."""


class MetadataCopyError(WatermarkRemoverError):
    """ExifTool could not copy metadata between two files."""


def setup_logging(
    file_log_level: LogLevel = "DEBUG",
    console_log_level: LogLevel = "INFO",
    log_folder: Path = Path("logs"),
) -> None:
    """
    Configure Loguru for both console and file logging.

    Args:
        file_log_level: Log level for file (use 'OFF' to disable)
        console_log_level: Log level for console (use 'OFF' to disable)
        log_folder: Directory where log files are stored

    """
    # Remove default handler
    logger.remove()

    if file_log_level != "OFF":
        log_folder.mkdir(parents=True, exist_ok=True)
        log_file = log_folder / Path(
            datetime.now(tz=UTC).strftime("%Y%m%d%H%M%S-watermark_remover.log"),
        )
        logger.add(
            log_file,
            level=file_log_level,
            format=(
                "{time:YYYY-MM-DD HH:mm:ss.SSS} | "
                "{level: <8} | "
                "{name:<8}:{function:<25}:{line:>4} | "
                "{message:<40} | "
                "{extra}"
            ),
            rotation="500 MB",
            retention="10 days",
            compression="zip",
        )

    if console_log_level != "OFF":
        logger.add(
            sys.stderr,
            level=console_log_level,
            colorize=True,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <7}</level> | "
                "<level>{message:<40.50}</level> | "
                "<yellow>{extra}</yellow>"
            ),
        )


class ImageFormat(StrEnum):
    """Image container formats recognized from leading byte signatures."""

    PNG = "png"
    JPEG = "jpeg"
    UNKNOWN = "unknown"

    @property
    def mime_type(self) -> str:
        """MIME type sent to the edit service for this format."""
        if self is ImageFormat.PNG:
            return "image/png"
        if self is ImageFormat.JPEG:
            return "image/jpeg"
        return "application/octet-stream"


def classify_image_bytes(data: bytes) -> ImageFormat:
    """
    Classify raw bytes as PNG, JPEG or unknown by their magic signature.

    Only the first 8 bytes are inspected. Buffers shorter than a signature never match it.

    Examples:
        >>> classify_image_bytes(b"\\x89PNG\\r\\n\\x1a\\n....")
        <ImageFormat.PNG: 'png'>
        >>> classify_image_bytes(b"\\xff\\xd8\\xff\\xe0")
        <ImageFormat.JPEG: 'jpeg'>
        >>> classify_image_bytes(b"")
        <ImageFormat.UNKNOWN: 'unknown'>

    """
    head = bytes(data[: len(PNG_SIGNATURE)])
    if head == PNG_SIGNATURE:
        return ImageFormat.PNG
    if head[: len(JPEG_SIGNATURE)] == JPEG_SIGNATURE:
        return ImageFormat.JPEG
    return ImageFormat.UNKNOWN


def mime_type_from_filename(filename: str) -> str:
    """
    Derive the MIME type of an input file from its extension.

    Examples:
        >>> mime_type_from_filename("IMG_0001.JPG")
        'image/jpeg'
        >>> mime_type_from_filename("notes.txt")
        'application/octet-stream'

    """
    if Path(filename).suffix.lower() in JPEG_EXTENSIONS:
        return "image/jpeg"
    return "application/octet-stream"


def list_jobs(directory: Path) -> list[str]:
    """
    List the JPEG files directly inside a directory.

    Args:
        directory: Folder to scan (not recursive)

    Returns:
        File names (not paths) with a .jpg/.jpeg extension in any case, in the order reported
        by the filesystem. Subdirectories are ignored even when named like a JPEG.

    Raises:
        FilesystemError: The directory cannot be read.

    """
    try:
        with os.scandir(directory) as entries:
            names = [
                entry.name
                for entry in entries
                if entry.is_file() and Path(entry.name).suffix.lower() in JPEG_EXTENSIONS
            ]
    except OSError as exc:
        msg = f"Cannot read directory {directory}: {exc}"
        raise FilesystemError(msg) from exc

    logger.debug("jpeg_files_listed", directory=str(directory), count=len(names))
    return names


class RunConfig(BaseModel):
    """Options of one batch run."""

    input_dir: Path = DEFAULT_INPUT_DIR
    output_dir: Path = DEFAULT_OUTPUT_DIR
    model_name: str = DEFAULT_MODEL_NAME
    base_prompt: str = DEFAULT_BASE_PROMPT
    # Higher quality gives larger files that stay closer to the generated image
    jpeg_quality: int = Field(default=DEFAULT_JPEG_QUALITY, ge=1, le=100)
    review: bool = True


class Job(BaseModel):
    """One input image and where its cleaned version is written."""

    model_config = ConfigDict(frozen=True)

    filename: str
    input_path: Path
    output_path: Path
    original: bytes
    mime_type: str


def load_job(filename: str, config: RunConfig) -> Job:
    """Read the original bytes of an input file into a Job."""
    input_path = config.input_dir / filename
    try:
        original = input_path.read_bytes()
    except OSError as exc:
        msg = f"Cannot read input file {input_path}: {exc}"
        raise FilesystemError(msg) from exc

    return Job(
        filename=filename,
        input_path=input_path,
        output_path=config.output_dir / filename,
        original=original,
        mime_type=mime_type_from_filename(filename),
    )


class WorkingContext(BaseModel):
    """
    Image, MIME type and prompt fed to the next edit request of a job.

    Instances are immutable and only built through `fresh` (from the original input) or
    `continued` (from the last generated image), so prompt and image never mix lineages.
    """

    model_config = ConfigDict(frozen=True)

    image: bytes
    mime_type: str
    prompt: str

    @classmethod
    def fresh(cls, job: Job, base_prompt: str) -> Self:
        """Start over from the untouched original with the base prompt."""
        return cls(image=job.original, mime_type=job.mime_type, prompt=base_prompt)

    def continued(self, image: bytes, comment: str) -> Self:
        """
        Continue from a generated image, appending an operator comment to the prompt.

        Examples:
            >>> ctx = WorkingContext(image=b"", mime_type="image/jpeg", prompt="Remove it.")
            >>> ctx.continued(b"\\xff\\xd8\\xff", "make it brighter").prompt
            'Remove it.\\nmake it brighter'

        """
        prompt = f"{self.prompt}\n{comment}" if comment else self.prompt
        return type(self)(
            image=image,
            mime_type=classify_image_bytes(image).mime_type,
            prompt=prompt,
        )


class TextPart(BaseModel):
    """Text returned alongside (or instead of) an image."""

    kind: Literal["text"] = "text"
    text: str


class InlineImagePart(BaseModel):
    """Image payload returned inline by the service."""

    kind: Literal["inline_image"] = "inline_image"
    data: bytes
    mime_type: str | None = None


class OtherPart(BaseModel):
    """Any content part that is neither text nor an inline image."""

    kind: Literal["other"] = "other"


ContentPart = Annotated[TextPart | InlineImagePart | OtherPart, Field(discriminator="kind")]


class EditResponse(BaseModel):
    """Content parts of the first candidate returned by the edit service."""

    parts: list[ContentPart] = Field(default_factory=list)

    @property
    def image(self) -> bytes | None:
        """Bytes of the first inline image part, or None when no image came back."""
        return next((part.data for part in self.parts if isinstance(part, InlineImagePart)), None)


def _decode_inline_data(value: Any) -> bytes | None:  # noqa: ANN401
    """
    Return inline payload bytes, accepting raw bytes or a base64 string.

    Examples:
        >>> _decode_inline_data("AAE=")
        b'\\x00\\x01'
        >>> _decode_inline_data("not base64!") is None
        True

    """
    if isinstance(value, (bytes, bytearray)):
        return bytes(value) or None
    if isinstance(value, str):
        try:
            return base64.b64decode(value, validate=True) or None
        except (binascii.Error, ValueError):
            return None
    return None


def _decode_part(raw: Any) -> ContentPart:  # noqa: ANN401
    if not isinstance(raw, Mapping):
        return OtherPart()

    inline = raw.get("inline_data") or raw.get("inlineData")
    if isinstance(inline, Mapping):
        data = _decode_inline_data(inline.get("data"))
        if data is not None:
            mime_type = inline.get("mime_type") or inline.get("mimeType")
            return InlineImagePart(data=data, mime_type=mime_type)

    text = raw.get("text")
    if isinstance(text, str):
        return TextPart(text=text)
    return OtherPart()


def parse_edit_response(payload: Any) -> EditResponse:  # noqa: ANN401
    """
    Decode the first candidate of a generate-content payload into typed content parts.

    Missing candidates, content or parts produce an empty response rather than an error.

    Examples:
        >>> parse_edit_response({"candidates": []}).image is None
        True
        >>> parse_edit_response(
        ...     {"candidates": [{"content": {"parts": [{"inline_data": {"data": b"img"}}]}}]},
        ... ).image
        b'img'

    """
    candidates = payload.get("candidates") if isinstance(payload, Mapping) else None
    if not isinstance(candidates, list) or not candidates:
        return EditResponse()

    first = candidates[0]
    content = first.get("content") if isinstance(first, Mapping) else None
    parts = content.get("parts") if isinstance(content, Mapping) else None
    if not isinstance(parts, list):
        return EditResponse()

    return EditResponse(parts=[_decode_part(part) for part in parts])


def _response_payload(response: Any) -> Any:  # noqa: ANN401
    """Convert an SDK response into plain Python data for parsing."""
    if isinstance(response, Mapping):
        return response
    model_dump = getattr(response, "model_dump", None)
    if callable(model_dump):
        return model_dump(exclude_none=True)
    return None


class EditClient(Protocol):
    """Anything able to turn a prompt and an image into an edited image."""

    def request_edit(self, prompt: str, image: bytes, mime_type: str) -> bytes | None: ...


class GeminiEditClient:
    """Edit images with a Gemini image model through the google-genai SDK."""

    def __init__(self, client: genai.Client, model_name: str = DEFAULT_MODEL_NAME) -> None:
        self.client = client
        self.model_name = model_name

    def request_edit(self, prompt: str, image: bytes, mime_type: str) -> bytes | None:
        """
        Send one edit request and return the first image the model produced.

        Args:
            prompt: Instructions for the model (base prompt plus any operator comments)
            image: Image bytes to edit
            mime_type: MIME type of `image`

        Returns:
            Bytes of the returned image, or None when the model answered without one.

        Raises:
            EditServiceError: The request failed at the API or transport level.

        """
        logger.info(
            "requesting_edit",
            model=self.model_name,
            mime_type=mime_type,
            size_kb=len(image) // 1024,
            prompt_lines=prompt.count("\n") + 1,
        )
        _t0 = time.perf_counter()
        try:
            response = self.client.models.generate_content(
                model=self.model_name,
                contents=[
                    genai_types.Part.from_text(text=prompt),
                    genai_types.Part.from_bytes(data=image, mime_type=mime_type),
                ],
                config=genai_types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
            )
        except (genai_errors.APIError, httpx.HTTPError) as exc:
            msg = f"Edit request to {self.model_name} failed: {exc}"
            raise EditServiceError(msg) from exc

        parsed = parse_edit_response(_response_payload(response))
        logger.info(
            "edit_completed",
            seconds=round(time.perf_counter() - _t0, 3),
            parts=[part.kind for part in parsed.parts],
        )
        for part in parsed.parts:
            if isinstance(part, TextPart):
                logger.debug("model_text_reply", text=part.text)
        return parsed.image


def encode_jpeg(image_bytes: bytes, quality: int = DEFAULT_JPEG_QUALITY) -> bytes:
    """
    Re-encode arbitrary image bytes to JPEG.

    Transparent images are composited onto a white background first.

    Raises:
        ImageEncodeError: Pillow cannot decode the input bytes.

    """
    try:
        with Image.open(BytesIO(image_bytes)) as img:
            img.load()
            if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                logger.debug("compositing_alpha_to_white")
                alpha = img.convert("RGBA")
                bg = Image.new("RGBA", alpha.size, (255, 255, 255, 255))
                rgb = Image.alpha_composite(bg, alpha).convert("RGB")
            else:
                rgb = img.convert("RGB")
    except (UnidentifiedImageError, OSError) as exc:
        msg = f"Returned image could not be decoded: {exc}"
        raise ImageEncodeError(msg) from exc

    buf = BytesIO()
    rgb.save(buf, format="JPEG", quality=quality, optimize=True)
    jpeg_bytes = buf.getvalue()
    logger.debug(
        "image_encoded_to_jpeg",
        width=rgb.width,
        height=rgb.height,
        quality=quality,
        size_kb=len(jpeg_bytes) // 1024,
    )
    return jpeg_bytes


class MetadataCopier:
    """Copy all metadata tags between files using one long-running ExifTool process."""

    def __init__(self, helper: ExifToolHelper | None) -> None:
        self.helper = helper

    def _copy(self, source: Path, destination: Path) -> None:
        if self.helper is None:
            msg = "ExifTool is not available"
            raise MetadataCopyError(msg)
        try:
            self.helper.execute(
                "-TagsFromFile",
                str(source),
                "-All:All",
                "-overwrite_original",
                str(destination),
            )
        except (ExifToolException, ValueError, TypeError, OSError) as exc:
            msg = f"ExifTool failed to copy tags from {source.name}: {exc}"
            raise MetadataCopyError(msg) from exc

    def copy_all(self, source: Path, destination: Path) -> bool:
        """
        Copy every tag from `source` onto `destination`, overwriting it in place.

        No backup of the destination is kept. Failures are logged and reported through the
        return value only.

        Returns:
            True if the tags were copied, False otherwise.

        """
        try:
            self._copy(source, destination)
        except MetadataCopyError as exc:
            logger.warning("metadata_copy_failed", error=str(exc), target=str(destination))
            return False
        logger.info("metadata_copied", source=str(source), target=str(destination))
        return True


@contextlib.contextmanager
def open_metadata_copier() -> Iterator[MetadataCopier]:
    """
    Start ExifTool once and terminate it when the block exits, whatever the outcome.

    If ExifTool cannot be started, a copier is still provided; every copy then reports failure.
    """
    helper: ExifToolHelper | None = None
    try:
        helper = ExifToolHelper()  # type: ignore[no-untyped-call]
        helper.run()
    except (FileNotFoundError, ExifToolException, OSError) as exc:
        logger.warning("exiftool_unavailable", error=str(exc))
        helper = None
    else:
        logger.debug("exiftool_started")

    try:
        yield MetadataCopier(helper)
    finally:
        if helper is not None and helper.running:
            helper.terminate()
            logger.debug("exiftool_terminated")


class MenuChoice(StrEnum):
    """Operator decisions after each generated result."""

    ACCEPT = "accept"
    COMMENT = "comment"
    RETRY = "retry"
    SKIP = "skip"


class JobOutcome(StrEnum):
    """How a job ended."""

    ACCEPTED = "accepted"
    SKIPPED = "skipped"
    NO_IMAGE = "no_image"


class Operator(Protocol):
    """Source of review decisions for a job."""

    def choose(self, job: Job) -> MenuChoice: ...

    def ask_comment(self, job: Job) -> str: ...


class ConsoleOperator:
    """Ask a human at the terminal."""

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def choose(self, job: Job) -> MenuChoice:
        name, target = escape(job.filename), escape(str(job.output_path))
        self.console.print(f"[bold]{name}[/bold] saved to [cyan]{target}[/cyan]")
        answer = Prompt.ask(
            "What next?",
            choices=[choice.value for choice in MenuChoice],
            default=MenuChoice.ACCEPT.value,
            console=self.console,
        )
        return MenuChoice(answer)

    def ask_comment(self, job: Job) -> str:  # noqa: ARG002
        return Prompt.ask("Comment for the model", default="", console=self.console)


class AutoAcceptOperator:
    """Accept the first generated result without asking (single-shot mode)."""

    def choose(self, job: Job) -> MenuChoice:  # noqa: ARG002
        return MenuChoice.ACCEPT

    def ask_comment(self, job: Job) -> str:  # noqa: ARG002
        return ""


def _write_output(job: Job, jpeg_bytes: bytes) -> None:
    try:
        job.output_path.write_bytes(jpeg_bytes)
    except OSError as exc:
        msg = f"Cannot write output file {job.output_path}: {exc}"
        raise FilesystemError(msg) from exc
    logger.info("output_written", target=str(job.output_path), size_kb=len(jpeg_bytes) // 1024)


def _discard_job(job: Job) -> None:
    """Delete the generated output (if any) and the original input."""
    try:
        job.output_path.unlink(missing_ok=True)
        job.input_path.unlink()
    except OSError as exc:
        msg = f"Cannot delete files of {job.filename}: {exc}"
        raise FilesystemError(msg) from exc
    logger.info("job_files_deleted", input=str(job.input_path), output=str(job.output_path))


def save_result(
    job: Job,
    returned_image: bytes,
    metadata_copier: MetadataCopier,
    jpeg_quality: int = DEFAULT_JPEG_QUALITY,
) -> None:
    """
    Re-encode a generated image to JPEG, write it over the job's output and copy metadata.

    A failed metadata copy is logged and otherwise ignored; the output file stays in place.
    """
    jpeg_bytes = encode_jpeg(returned_image, quality=jpeg_quality)
    _write_output(job, jpeg_bytes)
    metadata_copier.copy_all(job.input_path, job.output_path)


def review_job(
    job: Job,
    *,
    edit_client: EditClient,
    metadata_copier: MetadataCopier,
    operator: Operator,
    base_prompt: str = DEFAULT_BASE_PROMPT,
    jpeg_quality: int = DEFAULT_JPEG_QUALITY,
) -> JobOutcome:
    """
    Drive one job through edit, save and operator review until it reaches a terminal state.

    Args:
        job: Input image being cleaned
        edit_client: Service used for every edit request
        metadata_copier: Copies tags from the input onto each written output
        operator: Decides what happens after each saved result
        base_prompt: Prompt used for the first request and after every retry
        jpeg_quality: JPEG quality (1-100) for the written output

    Returns:
        ACCEPTED or SKIPPED from the operator, or NO_IMAGE when the model returned nothing.

    Note:
        - comment: the next request edits the last generated image with the comment appended
          to the current prompt; the MIME type is sniffed from the generated bytes
        - retry: the next request starts again from the original bytes, its extension-derived
          MIME type and the base prompt
        - skip: both the output and the original input are deleted

    """
    context = WorkingContext.fresh(job, base_prompt)
    attempt = 0
    while True:
        attempt += 1
        with logger.contextualize(attempt=attempt):
            returned_image = edit_client.request_edit(
                context.prompt,
                context.image,
                context.mime_type,
            )
            if returned_image is None:
                logger.warning("no_image_returned")
                return JobOutcome.NO_IMAGE

            save_result(job, returned_image, metadata_copier, jpeg_quality)

            choice = operator.choose(job)
            logger.info("operator_choice", choice=choice.value)

        if choice is MenuChoice.ACCEPT:
            return JobOutcome.ACCEPTED
        if choice is MenuChoice.SKIP:
            _discard_job(job)
            return JobOutcome.SKIPPED
        if choice is MenuChoice.COMMENT:
            comment = operator.ask_comment(job)
            context = context.continued(returned_image, comment)
            logger.debug("continuing_from_generated_image", comment=comment)
        else:
            context = WorkingContext.fresh(job, base_prompt)
            logger.debug("restarting_from_original")


class BatchSummary(BaseModel):
    """Per-file results of a batch run."""

    processed: dict[str, JobOutcome] = Field(default_factory=dict)
    failed: list[str] = Field(default_factory=list)


def run_batch(
    config: RunConfig,
    *,
    edit_client: EditClient,
    metadata_copier: MetadataCopier,
    operator: Operator,
) -> BatchSummary:
    """
    Review every JPEG of the input folder, one at a time.

    Any error raised while handling one file is logged with its name and the next file is
    processed anyway.

    Raises:
        FilesystemError: The input folder cannot be listed.

    """
    filenames = list_jobs(config.input_dir)
    summary = BatchSummary()
    if not filenames:
        logger.info("no_jpeg_files_found", directory=str(config.input_dir))
        return summary

    file_count = len(filenames)
    logger.info("jpeg_files_discovered", count=file_count)

    for idx, filename in enumerate(filenames, start=1):
        index = f"{idx}/{file_count}"
        with logger.contextualize(file=filename):
            try:
                job = load_job(filename, config)
                outcome = review_job(
                    job,
                    edit_client=edit_client,
                    metadata_copier=metadata_copier,
                    operator=operator,
                    base_prompt=config.base_prompt,
                    jpeg_quality=config.jpeg_quality,
                )
            except Exception as exc:  # noqa: BLE001
                logger.exception("processing_failed", index=index, error=str(exc))
                summary.failed.append(filename)
                continue

            logger.info("processed", index=index, outcome=outcome.value)
            summary.processed[filename] = outcome

    logger.info(
        "processing_summary",
        total_files=file_count,
        processed=len(summary.processed),
        failed=len(summary.failed),
        skipped=sum(1 for o in summary.processed.values() if o is JobOutcome.SKIPPED),
        no_image=sum(1 for o in summary.processed.values() if o is JobOutcome.NO_IMAGE),
    )
    if summary.failed:
        logger.error("files_failed", files=summary.failed)
    return summary


def resolve_api_key(api_key: str | None = None) -> str:
    """
    Return the explicit API key, falling back to the GEMINI_API_KEY environment variable.

    Raises:
        ConfigError: No key was given and the variable is unset or empty.

    """
    resolved = api_key or os.getenv(API_KEY_ENV_VAR)
    if not resolved:
        msg = f"{API_KEY_ENV_VAR} is not set. Export it or add it to a .env file."
        raise ConfigError(msg)
    return resolved


def _ensure_directories(config: RunConfig) -> None:
    for directory in (config.input_dir, config.output_dir):
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            msg = f"Cannot create directory {directory}: {exc}"
            raise FilesystemError(msg) from exc


@app.default
def run(
    *,
    input_dir: Annotated[
        Path,
        Parameter(
            name=("--input-dir",),
            validator=validators.Path(file_okay=False),
            help="Folder with the JPEGs to clean (created if missing)",
        ),
    ] = DEFAULT_INPUT_DIR,
    output_dir: Annotated[
        Path,
        Parameter(
            name=("--output-dir",),
            validator=validators.Path(file_okay=False),
            help="Folder receiving the cleaned JPEGs (created if missing)",
        ),
    ] = DEFAULT_OUTPUT_DIR,
    model_name: Annotated[
        str,
        Parameter(
            name=("--model", "-m"),
            help="Gemini image model name",
        ),
    ] = DEFAULT_MODEL_NAME,
    base_prompt: Annotated[
        str,
        Parameter(
            name=("--prompt",),
            help="Base instruction sent with every image",
        ),
    ] = DEFAULT_BASE_PROMPT,
    jpeg_quality: Annotated[
        int,
        Parameter(
            name=("--jpeg-quality",),
            validator=validators.Number(gte=1, lte=100),
            help="JPEG quality (1-100) of the written output",
        ),
    ] = DEFAULT_JPEG_QUALITY,
    review: Annotated[
        bool,
        Parameter(
            name=("--review",),
            negative="--no-review",
            help="Ask accept/comment/retry/skip after each result (default) or accept directly",
        ),
    ] = True,
    api_key: Annotated[
        str | None,
        Parameter(name=("--api-key", "-k"), help=f"Gemini API key. Will use {API_KEY_ENV_VAR}"),
    ] = None,
    file_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--file-log-level",
            help="Log level for file (use 'OFF' to disable)",
        ),
    ] = "DEBUG",
    log_folder: Annotated[
        Path,
        Parameter(
            name=("--log-folder",),
            help="Folder where log files are stored",
        ),
    ] = Path("logs"),
    console_log_level: Annotated[
        LogLevel,
        Parameter(
            name="--console-log-level",
            help="Log level for console (use 'OFF' to disable)",
        ),
    ] = "INFO",
) -> None:
    """
    Remove watermarks from every JPEG in the input folder with a Gemini image model.

    Requirements:
    - GEMINI_API_KEY in the environment (or ./.env), or --api-key.
    - ExifTool on PATH to carry metadata over (optional).

    Behavior:
    - Sends each image with the prompt, converts the result to JPEG in the output folder
        (same file name) and copies all metadata from the original.
    - With --review (default) you then choose:
        accept  keep the result and go to the next file
        comment add an instruction and edit the last result again
        retry   start again from the original with the base prompt
        skip    delete the result and the original file
    - With --no-review the first result is kept.

    Exit status: 1 if the API key is missing or the input folder cannot be read, else 0.
        Failures of individual files are logged but do not change the exit status.

    Examples:
        watermark-remover
        watermark-remover --input-dir ./scans --no-review --jpeg-quality 90

    """
    setup_logging(
        file_log_level=file_log_level,
        console_log_level=console_log_level,
        log_folder=log_folder,
    )
    logger.info(
        "starting_watermark_remover",
        input_dir=str(input_dir),
        output_dir=str(output_dir),
        model=model_name,
        jpeg_quality=jpeg_quality,
        review=review,
    )

    try:
        resolved_key = resolve_api_key(api_key)
    except ConfigError as exc:
        logger.critical("missing_api_key", error=str(exc))
        raise SystemExit(1) from exc
    logger.debug("api_key_resolved", source="option" if api_key else "environment")

    config = RunConfig(
        input_dir=input_dir,
        output_dir=output_dir,
        model_name=model_name,
        base_prompt=base_prompt,
        jpeg_quality=jpeg_quality,
        review=review,
    )

    edit_client = GeminiEditClient(genai.Client(api_key=resolved_key), config.model_name)
    operator: Operator = ConsoleOperator() if config.review else AutoAcceptOperator()

    with open_metadata_copier() as metadata_copier:
        try:
            _ensure_directories(config)
            run_batch(
                config,
                edit_client=edit_client,
                metadata_copier=metadata_copier,
                operator=operator,
            )
        except FilesystemError as exc:
            logger.critical("input_folder_unreadable", error=str(exc))
            raise SystemExit(1) from exc


if __name__ == "__main__":
    app()
