"""

     The MIT License (MIT)

     Copyright (c) 2024-2025 DX Flex Bridge contributors

     Permission is hereby granted, free of charge, to any person obtaining a copy
     of this software and associated documentation files (the "Software"), to deal
     in the Software without restriction, including without limitation the rights
     to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
     copies of the Software, and to permit persons to whom the Software is
     furnished to do so, subject to the following conditions:

     The above copyright notice and this permission notice shall be included in all
     copies or substantial portions of the Software.

     THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
     IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
     FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
     AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
     LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
     OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
     SOFTWARE.

"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Final

logger = logging.getLogger(__name__)

TOPIC_STATUS:       Final[str] = 'status'
TOPIC_SPOT:         Final[str] = 'spot'
TOPIC_CACHE_HEALTH: Final[str] = 'cache_health'

@dataclass(frozen=True)
class cStatusEvent:
    event:  str           # 'connectionState'
    state:  str
    server: str
    error:  str | None = None

@dataclass(frozen=True)
class cLinkEvent:
    """Message from a link to the supervisor.  generation identifies the transport session."""
    link:       str           # 'cluster' or 'radio'
    kind:       str
    generation: int
    payload:    Any = None

class cEventBus:
    """
    Lightweight async pub/sub bus for everything reported outward.

    - topic-based
    - subscribers get an asyncio.Queue
    - publishers never block; a full queue drops its oldest event
    """

    def __init__(self) -> None:
        self._subs: dict[str, list[asyncio.Queue[Any]]] = {}

    def subscribe(self, topic: str, maxsize: int = 64) -> asyncio.Queue[Any]:
        q: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._subs.setdefault(topic, []).append(q)
        return q

    def unsubscribe(self, topic: str, q: asyncio.Queue[Any]) -> None:
        if topic in self._subs:
            self._subs[topic] = [qq for qq in self._subs[topic] if qq is not q]

    def publish(self, topic: str, event: Any) -> None:
        for q in list(self._subs.get(topic, [])):
            if q.full():
                _ = q.get_nowait()
                logger.debug("Subscriber queue for '%s' full; dropped oldest event", topic)

            q.put_nowait(event)
