#!/usr/bin/env python3
"""
Pre-render every script in the keyword table into storage.

Scripts that are already stored are left alone, so this is safe to re-run.
With the Firebase backend, pass --email/--password to upload as a signed-in user.
"""

import argparse
import asyncio
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import structlog

from src.assistant.auth import IdentityClient
from src.assistant.config import init_config
from src.assistant.errors import AssistantError
from src.assistant.routing import get_script_resolver
from src.assistant.storage import create_storage
from src.assistant.tts import SpeechSynthesisClient
from src.assistant.tts_types import CachedAudio

logger = structlog.get_logger(__name__)


async def prerender(email: str, password: str) -> int:
    config = init_config()

    identity = IdentityClient(config)
    if email and password:
        await identity.sign_in(email, password)

    storage = create_storage(config, token_provider=lambda: identity.id_token)
    synthesizer = SpeechSynthesisClient(storage=storage, config=config)

    failures = 0
    try:
        for entry in get_script_resolver().entries:
            try:
                result = await synthesizer.synthesize(entry.script_name, entry.script_text)
            except AssistantError as e:
                failures += 1
                logger.error("Pre-render failed", script_name=entry.script_name, error=str(e))
                continue

            logger.info(
                "Script ready",
                script_name=entry.script_name,
                cached=isinstance(result, CachedAudio),
                url=result.url,
            )
    finally:
        await synthesizer.close()

    return 1 if failures else 0


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--email", default=os.getenv("ASSISTANT_EMAIL", ""))
    parser.add_argument("--password", default=os.getenv("ASSISTANT_PASSWORD", ""))
    args = parser.parse_args()

    sys.exit(asyncio.run(prerender(args.email, args.password)))


if __name__ == "__main__":
    main()
