"""
Transcription Engine - speech-to-text using Faster-Whisper.

Owns the lifecycle of the speech model:
  - the model is created lazily, exactly once per engine; concurrent callers
    wait on the same in-flight load instead of loading again
  - at most one transcription runs at a time; a second request fails fast
    with BusyError rather than queuing
  - word-level timestamps are requested first; if that run fails (or the
    model returns no word timings) the engine falls back once to coarser
    segment-level timestamps
"""

import os
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import numpy as np

from .errors import BusyError, ModelLoadError, TranscriptionError
from .progress import Phase, ProgressCallback, emit

logger = logging.getLogger(__name__)


@dataclass
class WordToken:
    """A recognized word (or coarse segment) with its time range in seconds."""
    text: str
    start: float
    end: Optional[float] = None

    def __repr__(self):
        end = f"{self.end:.2f}" if self.end is not None else "?"
        return f"WordToken('{self.text}', {self.start:.2f}-{end}s)"


@dataclass
class TranscriptResult:
    """Output of one transcription job."""
    full_text: str
    tokens: List[WordToken] = field(default_factory=list)
    coarse: bool = False      # True when tokens are segment-level
    language: Optional[str] = None


class ModelHandle:
    """
    Lazily created, shared model resource.

    The first caller of get() builds the model; everyone else (including
    concurrent callers) waits on the same future. A failed load is not
    cached, so the next get() retries.
    """

    def __init__(self, factory: Callable[[], Any]):
        self._factory = factory
        self._lock = threading.Lock()
        self._future: Optional[Future] = None

    @property
    def loaded(self) -> bool:
        future = self._future
        return future is not None and future.done() and future.exception() is None

    def get(self, progress_cb: ProgressCallback = None):
        with self._lock:
            future = self._future
            owner = future is None or (future.done() and future.exception() is not None)
            if owner:
                future = Future()
                self._future = future

        if not owner:
            if not future.done():
                emit(progress_cb, Phase.LOADING_MODEL, 5, "Waiting for model...")
            return future.result()

        emit(progress_cb, Phase.LOADING_MODEL, 5, "Loading AI model...")
        try:
            model = self._factory()
        except Exception as e:
            error = ModelLoadError(f"Could not load speech model: {e}")
            future.set_exception(error)
            raise error from e

        future.set_result(model)
        emit(progress_cb, Phase.LOADING_MODEL, 85, "Loading model...")
        emit(progress_cb, Phase.LOADING_MODEL, 100, "Model ready!")
        return model


class TranscriptionEngine:
    """
    Automatic Speech Recognition using Faster-Whisper.

    The model factory is the boundary to the recognizer: any object with a
    faster-whisper style `transcribe(audio, **options) -> (segments, info)`
    method works, which is how tests substitute a stub.
    """

    def __init__(self, config, model_factory: Optional[Callable[[], Any]] = None):
        self.model_size = getattr(config, "model", "tiny.en")
        self.compute_type = getattr(config, "compute_type", "int8")
        self.device = getattr(config, "device", "cpu")
        self.beam_size = getattr(config, "beam_size", 1)
        self.language = getattr(config, "language", None)
        self.word_timestamps = getattr(config, "word_timestamps", True)
        self.sample_rate = 16000

        # Thread count: 0 = auto-detect
        raw_threads = getattr(config, "threads", 0)
        if raw_threads <= 0:
            self.cpu_threads = os.cpu_count() or 4
        else:
            self.cpu_threads = raw_threads

        self._model = ModelHandle(model_factory or self._create_model)
        self._job_lock = threading.Lock()

    def _create_model(self):
        """Build the Faster-Whisper model (runs once per engine)."""
        from faster_whisper import WhisperModel

        logger.info(
            f"Loading Faster-Whisper model '{self.model_size}' "
            f"(compute_type={self.compute_type}, threads={self.cpu_threads})"
        )
        model = WhisperModel(
            self.model_size,
            device=self.device,
            compute_type=self.compute_type,
            cpu_threads=self.cpu_threads
        )
        logger.info("Faster-Whisper model loaded successfully.")
        return model

    @property
    def busy(self) -> bool:
        return self._job_lock.locked()

    @property
    def model_loaded(self) -> bool:
        return self._model.loaded

    def load_model(self, progress_cb: ProgressCallback = None):
        """Return the shared model, loading it on first use."""
        return self._model.get(progress_cb)

    def preload(self) -> bool:
        """Warm the model in advance. Failures are logged, not raised."""
        try:
            self.load_model()
            return True
        except ModelLoadError as e:
            logger.warning(f"Model preload failed: {e}")
            return False

    def transcribe(
        self,
        samples: np.ndarray,
        sample_rate: int = 16000,
        progress_cb: ProgressCallback = None,
    ) -> TranscriptResult:
        """
        Transcribe a mono PCM buffer.

        Args:
            samples: Float32 mono PCM.
            sample_rate: Must equal the model rate (16 kHz).
            progress_cb: Optional phase-local progress callback.

        Returns:
            TranscriptResult with word tokens (or coarse segment tokens).

        Raises:
            BusyError: If another transcription is running.
            ModelLoadError: If the model cannot be created.
            TranscriptionError: If inference fails after the fallback.
        """
        if not self._job_lock.acquire(blocking=False):
            raise BusyError("A transcription is already in progress")

        try:
            if sample_rate != self.sample_rate:
                raise ValueError(
                    f"Expected {self.sample_rate}Hz audio, got {sample_rate}Hz"
                )

            model = self.load_model(progress_cb)
            audio = np.asarray(samples, dtype=np.float32)
            total = len(audio) / float(self.sample_rate)
            logger.info(f"Transcribing {total:.1f}s of audio...")

            if self.word_timestamps:
                try:
                    return self._run(model, audio, total, True, progress_cb)
                except Exception as e:
                    logger.warning(
                        f"Word-level transcription failed ({e}); "
                        f"retrying with segment timestamps"
                    )

            try:
                return self._run(model, audio, total, False, progress_cb)
            except Exception as e:
                raise TranscriptionError(f"Transcription failed: {e}") from e
        finally:
            self._job_lock.release()

    def _run(
        self,
        model,
        audio: np.ndarray,
        total: float,
        word_level: bool,
        progress_cb: ProgressCallback,
    ) -> TranscriptResult:
        """One inference pass; consumes the segment generator fully."""
        emit(progress_cb, Phase.TRANSCRIBING, 0, "Generating subtitles...")
        segments_iter, info = model.transcribe(
            audio,
            beam_size=self.beam_size,
            language=self.language,
            word_timestamps=word_level,
            vad_filter=False,
            condition_on_previous_text=False,
        )

        duration = getattr(info, "duration", None) or total
        texts: List[str] = []
        words: List[WordToken] = []
        coarse: List[WordToken] = []

        for seg in segments_iter:
            text = (seg.text or "").strip()
            if text:
                texts.append(text)
                coarse.append(WordToken(text, float(seg.start), float(seg.end)))

            for w in getattr(seg, "words", None) or []:
                if w.start is None:
                    continue
                end = float(w.end) if w.end is not None else None
                words.append(WordToken(w.word, float(w.start), end))

            if duration > 0:
                emit(
                    progress_cb, Phase.TRANSCRIBING,
                    100.0 * min(1.0, float(seg.end) / duration),
                    "Transcribing..."
                )

        is_coarse = not (word_level and words)
        if word_level and not words and coarse:
            logger.warning("Model returned no word timings; using segment timestamps")

        result = TranscriptResult(
            full_text=" ".join(texts),
            tokens=coarse if is_coarse else words,
            coarse=is_coarse,
            language=getattr(info, "language", None),
        )
        emit(progress_cb, Phase.TRANSCRIBING, 100, "Processing results...")
        logger.info(
            f"Transcription complete: {len(result.tokens)} "
            f"{'segments' if result.coarse else 'words'}"
        )
        return result
