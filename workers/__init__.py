"""
Workers module for the trust-check service
"""

from workers.base import BaseWorker
from workers.metadata import MetadataWorker
from workers.captions import CaptionWorker
from workers.remote_transcriber import RemoteTranscriberWorker
from workers.audio_downloader import AudioDownloadWorker
from workers.transcriber import LocalAudioTranscriber
from workers.transcript_chain import TranscriptChain, build_strategies
from workers.summarizer import Analyzer
from workers.orchestrator import PipelineOrchestrator

__all__ = [
    'BaseWorker',
    'MetadataWorker',
    'CaptionWorker',
    'RemoteTranscriberWorker',
    'AudioDownloadWorker',
    'LocalAudioTranscriber',
    'TranscriptChain',
    'build_strategies',
    'Analyzer',
    'PipelineOrchestrator',
]
