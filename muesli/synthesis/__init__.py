"""Generative services: folder synthesis and voice memo transcription."""

from muesli.synthesis.base import SynthesisService, Transcriber
from muesli.synthesis.prompt import build_synthesis_prompt

__all__ = ["SynthesisService", "Transcriber", "build_synthesis_prompt"]
