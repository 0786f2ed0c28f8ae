"""
Effects
Side-effect requests the core hands to the platform collaborator
"""

import logging

logger = logging.getLogger("timegate")


class EffectHandler:
    """Applies block/unblock effects on the chat platform"""

    async def request_block_effects(self, guild_id: str, user_id: str, limit_minutes: int):
        """Apply the block role, disconnect the member from voice and notify them"""
        raise NotImplementedError

    async def request_unblock_effects(self, guild_id: str, user_id: str):
        """Remove the block role and notify the member"""
        raise NotImplementedError


class NullEffectHandler(EffectHandler):
    """Effect handler used when no platform client is attached"""

    async def request_block_effects(self, guild_id: str, user_id: str, limit_minutes: int):
        logger.debug(f"No effect handler attached; skipping block effects for {user_id}")

    async def request_unblock_effects(self, guild_id: str, user_id: str):
        logger.debug(f"No effect handler attached; skipping unblock effects for {user_id}")
