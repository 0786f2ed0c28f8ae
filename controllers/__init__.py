"""
Controllers package for Timegate
"""

from controllers.voice_controller import VoiceController
from controllers.command_controller import CommandController
from controllers.discord_effects import DiscordEffectHandler

__all__ = ["VoiceController", "CommandController", "DiscordEffectHandler"]
