"""
Backmask: API Server
====================
FastAPI application that:
1. Accepts audio/video uploads and reverses them (globally or per speech burst)
2. Runs per-frame analysis and threshold-based segment redetection
3. Manages annotations, snippets and reversed outputs

Configuration:
    All settings are loaded from .env file via config module.
"""

from __future__ import annotations

import shutil
import tempfile
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from audio_engine import AudioEngine
from config import config
from errors import DecodeError, InvalidSegmentBounds, MissingSeriesData, TranscodeError
from redetection import RedetectionEngine


# =============================================================================
# CONFIGURATION
# =============================================================================

VERSION = "1.0.0"
ALLOWED_EXTENSIONS = {".mp3", ".wav", ".m4a", ".flac", ".ogg", ".aac", ".mp4", ".mov", ".webm", ".mkv"}


# =============================================================================
# REQUEST MODELS
# =============================================================================

class RedetectRequest(BaseModel):
    analysisId: int
    energyThreshold: float = config.DEFAULT_ENERGY_THRESHOLD
    formantShiftThreshold: float = config.DEFAULT_FORMANT_SHIFT_THRESHOLD


class AnnotationRequest(BaseModel):
    analysisId: int
    segmentIndex: int
    annotation: str
    isSnippet: bool = False


class DeleteSnippetRequest(BaseModel):
    analysisId: int
    file: str
    forwardFile: str
    start: float
    end: float


class DeleteOutputRequest(BaseModel):
    file: str


# =============================================================================
# APPLICATION SETUP
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    # Startup
    for directory in (config.OUTPUT_DIR, config.UPLOAD_DIR):
        directory.mkdir(parents=True, exist_ok=True)

    print("=" * 60)
    print(f"  Backmask API v{VERSION}")
    print("=" * 60)
    print(f"  Outputs: {config.OUTPUT_DIR}")
    print(f"  Uploads: {config.UPLOAD_DIR}")
    print(f"  Allowed Extensions: {sorted(ALLOWED_EXTENSIONS)}")
    print(f"  Max File Size: {config.MAX_FILE_SIZE_MB} MB")
    print("=" * 60)

    yield

    # Shutdown
    print("Backmask API shutting down...")


app = FastAPI(
    title="Backmask API",
    description="Reverse-speech analysis backend",
    version=VERSION,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type"],
)


def get_engine() -> AudioEngine:
    """Build an engine from the current configuration."""
    return AudioEngine.from_config(config)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def validate_file_extension(filename: str) -> bool:
    """Check if file has an allowed extension."""
    ext = Path(filename).suffix.lower()
    return ext in ALLOWED_EXTENSIONS


def save_upload_file(upload_file: UploadFile, destination: Path) -> int:
    """Save uploaded file to destination, returning its size in bytes."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    with open(destination, "wb") as buffer:
        shutil.copyfileobj(upload_file.file, buffer)
    return destination.stat().st_size


def check_upload(file: UploadFile) -> None:
    if not file.filename:
        raise HTTPException(status_code=400, detail="No filename provided")

    if not validate_file_extension(file.filename):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid file type. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )


def check_size(size: int) -> None:
    if size > config.MAX_FILE_SIZE:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size: {config.MAX_FILE_SIZE_MB} MB"
        )


def to_http_error(e: Exception, action: str) -> HTTPException:
    """Map core errors onto HTTP status codes."""
    if isinstance(e, MissingSeriesData):
        return HTTPException(status_code=409, detail=str(e))
    if isinstance(e, (DecodeError, InvalidSegmentBounds, ValueError)):
        return HTTPException(status_code=400, detail=f"{action}: {e}")
    if isinstance(e, (FileNotFoundError, LookupError)):
        return HTTPException(status_code=404, detail=str(e).strip("'\""))
    if isinstance(e, TranscodeError):
        return HTTPException(status_code=500, detail=f"{action}: transcoding error: {e}")

    print(f"[API] Error: {action}: {e}")
    return HTTPException(status_code=500, detail=f"{action}: {e}")


# =============================================================================
# ROUTES
# =============================================================================

@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "message": f"Backmask API v{VERSION}"}


@app.get("/health")
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "version": VERSION,
        "allowed_extensions": sorted(ALLOWED_EXTENSIONS),
        "max_file_size_mb": config.MAX_FILE_SIZE_MB,
        "vad": {
            "frame_size": config.VAD_FRAME_SIZE,
            "rms_threshold": config.VAD_RMS_THRESHOLD,
            "max_chunk_duration": config.VAD_MAX_CHUNK_DURATION,
        },
        "features": {
            "buffer_size": config.FEATURE_BUFFER_SIZE,
            "hop_size": config.FEATURE_HOP_SIZE,
        },
    }


@app.post("/api/analyze")
def analyze_audio(
    audio: UploadFile = File(...),
    engine: AudioEngine = Depends(get_engine),
):
    """
    Upload a file, reverse it globally and analyze the reversed track.

    The original upload is kept (forward snippets are cut from it).
    Detected segments start empty; call /api/redetect to populate them.
    """
    check_upload(audio)

    upload_dir = config.UPLOAD_DIR
    ext = Path(audio.filename).suffix.lower()
    upload_path = upload_dir / f"audio-{int(time.time() * 1000)}{ext}"

    try:
        file_size = save_upload_file(audio, upload_path)
        check_size(file_size)
        print(f"[API] Saved upload to: {upload_path} ({file_size / 1024 / 1024:.2f} MB)")

        record = engine.analyze(upload_path)
    except HTTPException:
        upload_path.unlink(missing_ok=True)
        raise
    except Exception as e:
        upload_path.unlink(missing_ok=True)
        raise to_http_error(e, "Processing failed") from e

    analysis_file = engine.store.record_path(record.analysis_id).name
    print(f"[API] Analysis {record.analysis_id} complete: {len(record.spectrogram)} frames")

    return JSONResponse(content={
        "analysisId": record.analysis_id,
        "reversedAudioUrl": record.reversed_audio_url,
        "originalAudioUrl": f"/uploads/{upload_path.name}",
        "analysisFile": f"/outputs/reversed/{analysis_file}",
        "mfccSummary": record.mfcc[:config.MFCC_PREVIEW_FRAMES],
        "pitchSummary": [],
        "formantSummary": record.formants,
        "spectrogramData": record.spectrogram[:config.SPECTROGRAM_PREVIEW_FRAMES],
        "detectedSegments": [s.to_dict() for s in record.detected_segments],
        "duration": record.duration,
        "sampleRate": record.sample_rate,
    })


@app.post("/api/reverse-local")
def reverse_local(
    audio: UploadFile = File(...),
    engine: AudioEngine = Depends(get_engine),
):
    """
    Reverse each speech burst in place, keeping the forward timeline.

    Returns the reversed WAV URL and the reversed segments in seconds.
    """
    check_upload(audio)

    temp_dir = tempfile.mkdtemp(prefix="backmask_")
    temp_file_path = Path(temp_dir) / Path(audio.filename).name

    try:
        file_size = save_upload_file(audio, temp_file_path)
        check_size(file_size)
        print(f"[API] Saved upload to: {temp_file_path}")

        result = engine.reverse_locally(temp_file_path)
    except HTTPException:
        raise
    except Exception as e:
        raise to_http_error(e, "Processing failed") from e
    finally:
        try:
            shutil.rmtree(temp_dir)
        except OSError as cleanup_error:
            print(f"[API] Warning: Failed to cleanup temp dir: {cleanup_error}")

    content = result.to_dict()
    content["reversedAudioUrl"] = f"/outputs/reversed/{result.output_path.name}"
    return JSONResponse(content=content)


@app.post("/api/redetect")
def redetect_segments(request: RedetectRequest, engine: AudioEngine = Depends(get_engine)):
    """Re-run detection on stored normalized series with new thresholds."""
    try:
        segments = RedetectionEngine(engine.store).run(
            request.analysisId,
            request.energyThreshold,
            request.formantShiftThreshold,
        )
        record = engine.store.load(request.analysisId)
    except Exception as e:
        raise to_http_error(e, "Failed to re-detect segments") from e

    return {
        "detectedSegments": [s.to_dict() for s in segments],
        "reversedAudioUrl": record.reversed_audio_url,
    }


@app.post("/api/extract-segment")
def extract_segment(
    audioUrl: str = Form(...),
    start: float = Form(...),
    end: float = Form(...),
    analysisId: int = Form(...),
    playbackSpeed: Optional[float] = Form(None),
    annotation: str = Form(""),
    engine: AudioEngine = Depends(get_engine),
):
    """Cut a snippet from both the reversed and the forward audio."""
    try:
        snippet = engine.extract_segment(
            analysisId, audioUrl, start, end,
            playback_speed=playbackSpeed or 1.0,
            annotation=annotation,
        )
    except Exception as e:
        raise to_http_error(e, "Failed to extract segment") from e

    content = snippet.to_dict()
    content["url"] = f"/outputs/snippets/{snippet.file}"
    content["forwardUrl"] = f"/outputs/snippets/{snippet.forward_file}"
    return content


@app.post("/api/save-annotation")
def save_annotation(request: AnnotationRequest, engine: AudioEngine = Depends(get_engine)):
    """Set the annotation of a detected segment or a snippet."""
    try:
        engine.store.save_annotation(
            request.analysisId,
            request.segmentIndex,
            request.annotation,
            is_snippet=request.isSnippet,
        )
    except Exception as e:
        raise to_http_error(e, "Failed to save annotation") from e

    return {"success": True}


@app.get("/api/snippets")
def list_snippets(engine: AudioEngine = Depends(get_engine)):
    """List snippets across all analyses."""
    return engine.store.list_snippets()


@app.delete("/api/snippets")
def delete_snippet(request: DeleteSnippetRequest, engine: AudioEngine = Depends(get_engine)):
    """Delete a snippet and its clip files."""
    try:
        engine.store.delete_snippet(
            request.analysisId, request.file, request.forwardFile, request.start, request.end
        )
    except Exception as e:
        raise to_http_error(e, "Failed to delete snippet") from e

    return {"success": True}


@app.get("/api/outputs/reversed")
def list_reversed_outputs(engine: AudioEngine = Depends(get_engine)):
    """List reversed audio files."""
    return engine.store.list_reversed_outputs()


@app.delete("/api/outputs/reversed")
def delete_reversed_output(request: DeleteOutputRequest, engine: AudioEngine = Depends(get_engine)):
    """Delete one reversed audio file by name."""
    try:
        engine.store.delete_reversed_output(request.file)
    except Exception as e:
        raise to_http_error(e, "Failed to delete reversed output") from e

    return {"success": True, "message": f"File {request.file} deleted successfully."}


@app.get("/api/check-audio/{filename}")
def check_audio(filename: str, engine: AudioEngine = Depends(get_engine)):
    """Report whether a reversed output exists."""
    try:
        path = engine.store.reversed_output_path(filename)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not path.is_file():
        return {"exists": False}

    return {"exists": True, "size": path.stat().st_size, "file": path.name}


app.mount("/outputs", StaticFiles(directory=config.OUTPUT_DIR, check_dir=False), name="outputs")
app.mount("/uploads", StaticFiles(directory=config.UPLOAD_DIR, check_dir=False), name="uploads")


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=True,
        log_level="info"
    )
