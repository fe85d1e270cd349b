"""Command-Line Interface handler for SubStitch."""

import argparse
import logging
import os
import sys

from .config_loader import ConfigLoader, DEFAULT_CONFIG
from .log_setup import setup_logging, setup_logging_from_config
from .models import EntrySource, JobState
from .session import TranscriptionSession
from .exceptions import SubStitchError, ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


class CLIHandler:
    """Parses arguments and runs one SubStitch session."""

    def __init__(self):
        self.parser = self._create_parser()

    def _create_parser(self) -> argparse.ArgumentParser:
        """Creates the argument parser for the CLI."""
        parser = argparse.ArgumentParser(
            description="SubStitch: Generate subtitles for long audio and video files with chunked Whisper transcription.",
            formatter_class=argparse.ArgumentDefaultsHelpFormatter
        )
        parser.add_argument(
            "-m", "--media",
            default=None,
            help="Path to the input audio or video file. Optional with --resume or --import-srt."
        )
        parser.add_argument(
            "-o", "--output-dir",
            required=True,
            help="Directory to save the generated subtitle files."
        )
        parser.add_argument(
            "-c", "--config",
            default=DEFAULT_CONFIG_PATH,
            help="Path to the configuration YAML file."
        )
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
        parser.add_argument(
            "-f", "--format",
            default=None,
            choices=["srt", "vtt", "txt"],
            help="Override the output subtitle format specified in config."
        )
        transform = parser.add_mutually_exclusive_group()
        transform.add_argument(
            "--translate",
            action="store_true",
            help="Translate the subtitles with the Hugging Face model from config."
        )
        transform.add_argument(
            "--correct",
            action="store_true",
            help="Correct the subtitles with the OpenAI-compatible chat model from config."
        )
        transform.add_argument(
            "--ai-translate",
            metavar="LANGUAGE",
            default=None,
            help="Translate the subtitles into LANGUAGE with the OpenAI-compatible chat model."
        )
        parser.add_argument(
            "--session",
            default=None,
            help="Save the editing session to this JSON file."
        )
        start = parser.add_mutually_exclusive_group()
        start.add_argument(
            "--resume",
            default=None,
            help="Load a saved session instead of transcribing."
        )
        start.add_argument(
            "--import-srt",
            metavar="SRT",
            default=None,
            help="Start from an existing SRT file instead of transcribing. With --media, its duration bounds the timeline."
        )
        parser.add_argument(
            "--trim-silence",
            action="store_true",
            help="Trim leading and trailing silence from every subtitle using the media waveform."
        )
        mux = parser.add_mutually_exclusive_group()
        mux.add_argument(
            "--embed",
            action="store_true",
            help="Write a copy of the media with the subtitles as a soft track."
        )
        mux.add_argument(
            "--burn",
            action="store_true",
            help="Write a copy of the video with the subtitles burned in."
        )
        return parser

    def _load_config(self, config_path: str) -> dict:
        try:
            return ConfigLoader().load_config(config_path)
        except FileNotFoundError:
            if config_path != DEFAULT_CONFIG_PATH:
                raise
            logger.warning(f"No {DEFAULT_CONFIG_PATH} found. Using built-in defaults.")
            return dict(DEFAULT_CONFIG)

    def _create_transformer(self, args: argparse.Namespace, config: dict):
        """Builds the provider for the requested transform pass, or None."""
        if args.translate:
            from .translator import HuggingFaceTranslator
            return HuggingFaceTranslator(model_name=config['translation_model'], device=config['device']), EntrySource.TRANSLATED
        if args.correct or args.ai_translate:
            from .ai_corrector import OpenAICorrector
            corrector = OpenAICorrector(
                model=config['openai_model'],
                base_url=config.get('openai_base_url'),
                mode="translate" if args.ai_translate else "correct",
                target_language=args.ai_translate,
            )
            return corrector, EntrySource.TRANSLATED if args.ai_translate else EntrySource.CORRECTED
        return None, None

    def _create_transcriber(self, config: dict):
        from .whisper_transcriber import WhisperTranscriber
        device = config['device']
        return WhisperTranscriber(
            model_name=config['whisper_model'],
            device=device,
            fp16=config['whisper_fp16'] if device == 'cuda' else False,
            language=config.get('language'),
        )

    def run(self) -> None:
        """Parses arguments, sets up logging, loads config, and runs the session."""
        args = self.parser.parse_args()
        if not (args.media or args.resume or args.import_srt):
            self.parser.error("one of --media, --resume or --import-srt is required")
        if (args.embed or args.burn) and not args.media:
            self.parser.error("--embed and --burn need --media")

        log_level = getattr(logging, args.log_level.upper(), logging.INFO)
        setup_logging(log_level=log_level, log_dir='logs', log_file='substitch_init.log')

        try:
            config = self._load_config(args.config)
        except (ConfigurationError, FileNotFoundError) as e:
            logger.critical(f"Failed to load configuration from {args.config}: {e}")
            sys.exit(1)

        setup_logging_from_config(config, log_level)

        if args.device:
            logger.info(f"Overriding device from config with CLI argument: {args.device}")
            config['device'] = args.device
        if args.format:
            config['output_format'] = args.format

        if args.media and not os.path.isfile(args.media):
            logger.critical(f"Input media file not found or is not a file: {args.media}")
            sys.exit(1)

        exit_code = 0
        try:
            transformer, source = self._create_transformer(args, config)
            transcriber = None if (args.resume or args.import_srt) else self._create_transcriber(config)
            base_name = os.path.splitext(os.path.basename(args.media or args.resume or args.import_srt))[0]
            ext = config['output_format']

            with TranscriptionSession(config, transcriber=transcriber) as session:
                if args.resume:
                    session.load(args.resume)
                elif args.import_srt:
                    session.import_subtitles(args.import_srt, media=args.media)
                else:
                    result = session.transcribe(args.media)
                    if result.state != JobState.COMPLETED:
                        for start, end in result.partial_failure.missing_ranges:
                            logger.warning(f"No subtitles for {start:.2f}s-{end:.2f}s")
                        exit_code = 1

                if args.trim_silence:
                    session.trim_silence(args.media)

                subtitle_path = session.export(os.path.join(args.output_dir, f"{base_name}.{ext}"))

                if transformer is not None:
                    report = session.run_transform(transformer, source)
                    if report.failures:
                        logger.warning(f"{len(report.failures)} entries kept their text after failed {source.value} requests")
                        exit_code = 1
                    subtitle_path = session.export(os.path.join(args.output_dir, f"{base_name}.{source.value}.{ext}"))

                if args.session:
                    session.save(args.session)

                if args.embed or args.burn:
                    from .media_muxer import MediaMuxer
                    muxer = MediaMuxer(ffmpeg_path=config.get('ffmpeg_path'))
                    media_ext = os.path.splitext(args.media)[1]
                    output_media = os.path.join(args.output_dir, f"{base_name}.subtitled{media_ext}")
                    if args.embed:
                        muxer.embed(args.media, subtitle_path, output_media)
                    else:
                        muxer.burn(args.media, subtitle_path, output_media)

            logger.info("SubStitch finished.")
            sys.exit(exit_code)

        except SubStitchError as e:
            logger.error(f"A SubStitch error occurred: {e}")
            sys.exit(1)
        except FileNotFoundError as e:
            logger.error(str(e))
            sys.exit(1)
        except KeyboardInterrupt:
            logger.warning("Process interrupted by user (Ctrl+C). Exiting.")
            sys.exit(1)
        except Exception as e:
            logger.critical(f"An unexpected critical error occurred at the top level: {e}", exc_info=True)
            sys.exit(2)
