#!/usr/bin/env python3
"""
SubStitch Batch Processing Entry Point

Transcribes every audio/video file in a directory, smallest first, writing
subtitles into a Subs/ folder next to the media.
"""

import argparse
import logging
import os
import sys
import time
from typing import List, Tuple

from tqdm import tqdm

from substitch.config_loader import ConfigLoader
from substitch.log_setup import setup_logging, setup_logging_from_config
from substitch.audio_source import AudioSource
from substitch.session import TranscriptionSession
from substitch.models import JobState
from substitch.exceptions import SubStitchError, ConfigurationError, FileSystemError
from substitch.utils import ensure_dir_exists

logger = logging.getLogger(__name__)

MEDIA_EXTENSIONS = (".mp4", ".mkv", ".mov", ".avi", ".webm", ".mp3", ".wav", ".m4a", ".flac", ".ogg")


def find_and_sort_media(input_dir: str) -> List[Tuple[str, int]]:
    """
    Finds all media files in the input directory and sorts them by size.

    Args:
        input_dir: The directory to search for media files.

    Returns:
        A list of (filepath, filesize) tuples, smallest first.

    Raises:
        FileNotFoundError: If the input directory doesn't exist.
        ValueError: If the input path is not a directory.
    """
    if not os.path.exists(input_dir):
        raise FileNotFoundError(f"Input directory not found: {input_dir}")
    if not os.path.isdir(input_dir):
        raise ValueError(f"Input path is not a directory: {input_dir}")

    media_files = []
    logger.info(f"Scanning directory for media files: {input_dir}")
    for filename in os.listdir(input_dir):
        if filename.lower().endswith(MEDIA_EXTENSIONS):
            filepath = os.path.join(input_dir, filename)
            try:
                if os.path.isfile(filepath):
                    media_files.append((filepath, os.path.getsize(filepath)))
            except OSError as e:
                logger.warning(f"Could not access file {filepath}: {e}. Skipping.")

    media_files.sort(key=lambda item: item[1])
    logger.info(f"Found {len(media_files)} media files. Sorted by size (smallest first).")
    return media_files


def run_batch_processing():
    """Parses arguments, sets up, and runs batch transcription."""
    parser = argparse.ArgumentParser(
        description="SubStitch Batch: Generate subtitles for every media file in a directory.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument("-i", "--input-dir", required=True, help="Directory containing the input media files.")
    parser.add_argument("-c", "--config", default="config.yaml", help="Path to the configuration YAML file.")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level for console and file output."
    )
    parser.add_argument(
        "--device",
        default=None,
        choices=["cuda", "cpu"],
        help="Override the processing device (cuda or cpu) specified in config."
    )
    parser.add_argument("--save-sessions", action="store_true", help="Also save a session JSON per file.")
    args = parser.parse_args()

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    setup_logging(log_level=log_level, log_dir='logs', log_file='substitch_batch_init.log')

    try:
        config = ConfigLoader().load_config(args.config)
    except (ConfigurationError, FileNotFoundError) as e:
        logger.critical(f"Failed to load configuration: {e}")
        sys.exit(1)

    setup_logging_from_config(config, log_level, log_file='substitch_batch.log')
    if args.device:
        logger.info(f"Overriding device from config with CLI argument: {args.device}")
        config['device'] = args.device

    try:
        media_paths = [item[0] for item in find_and_sort_media(args.input_dir)]
    except (FileNotFoundError, ValueError) as e:
        logger.critical(f"Input directory error: {e}")
        sys.exit(1)
    if not media_paths:
        logger.warning(f"No media files found in {args.input_dir}. Exiting.")
        sys.exit(0)

    subs_dir = os.path.join(args.input_dir, "Subs")
    try:
        ensure_dir_exists(subs_dir)
    except FileSystemError as e:
        logger.critical(f"Could not create output directory: {e}")
        sys.exit(1)

    # The Whisper model is loaded once for the whole batch
    try:
        from substitch.whisper_transcriber import WhisperTranscriber
        device = config['device']
        transcriber = WhisperTranscriber(
            model_name=config['whisper_model'],
            device=device,
            fp16=config['whisper_fp16'] if device == 'cuda' else False,
            language=config.get('language'),
        )
        audio_source = AudioSource(ffmpeg_path=config.get('ffmpeg_path'), sample_rate=config['sample_rate'])
    except SubStitchError as e:
        logger.critical(f"Failed to initialize SubStitch components: {e}", exc_info=True)
        sys.exit(1)

    total_files = len(media_paths)
    files_processed = 0
    files_failed = 0
    batch_start_time = time.time()
    ext = config['output_format']

    logger.info(f"--- Starting Batch Subtitle Generation for {total_files} files ---")
    with tqdm(total=total_files, unit="file", desc="Starting Batch") as pbar:
        for media_path in media_paths:
            filename = os.path.basename(media_path)
            base_name = os.path.splitext(filename)[0]
            pbar.set_description(f"Processing: {filename[:30]}...")
            try:
                with TranscriptionSession(config, transcriber=transcriber, audio_source=audio_source) as session:
                    result = session.transcribe(media_path, show_progress=False)
                    session.export(os.path.join(subs_dir, f"{base_name}.{ext}"))
                    if args.save_sessions:
                        session.save(os.path.join(subs_dir, f"{base_name}.session.json"))

                if result.state == JobState.COMPLETED:
                    files_processed += 1
                else:
                    logger.warning(f"{filename} transcribed with gaps: {result.partial_failure.missing_ranges}")
                    files_failed += 1
            except SubStitchError as e:
                logger.error(f"SubStitch failed for '{filename}': {e}")
                files_failed += 1
            except KeyboardInterrupt:
                logger.warning("Batch process interrupted by user (Ctrl+C). Exiting.")
                sys.exit(1)
            except Exception as e:
                logger.error(f"An unexpected error occurred processing '{filename}': {e}", exc_info=True)
                files_failed += 1
            finally:
                pbar.update(1)

    logger.info("--- Batch Subtitle Generation Finished ---")
    logger.info(f"Total time: {time.time() - batch_start_time:.2f} seconds")
    logger.info(f"Successfully processed: {files_processed}/{total_files} files")
    logger.info(f"Failed or partial: {files_failed}/{total_files} files")

    sys.exit(1 if files_failed > 0 else 0)


if __name__ == "__main__":
    run_batch_processing()
