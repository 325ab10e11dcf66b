"""
Video Captioner - Caption Pipeline Package

Speech-to-caption pipeline and synchronized render/export engine:
  - audio_extractor: FFmpeg decode, mono down-mix, linear resampling
  - transcriber: Faster-Whisper model lifecycle and word-level tokens
  - segmenter: word tokens to caption spans (fixed / auto policies)
  - track: the sorted caption list and its authoring operations
  - style / animation: caption appearance and entrance animations
  - clock / synchronizer: playback clock polling and active-caption lookup
  - renderer: the shared Pillow caption draw routine
  - video_source / overlay: frame access and composition for preview and export
  - encoder / exporter: FFmpeg encoding of the burned-in export pass
  - subtitle_writer: SRT / VTT / ASS / JSON / CSV / TXT output
  - progress / cooperative: job progress and yielding under CPU load
  - errors: the pipeline's exception types
  - orchestrator: the editing session tying the stages together
"""
