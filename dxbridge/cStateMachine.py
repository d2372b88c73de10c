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

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Final

logger = logging.getLogger(__name__)

class eLinkState(Enum):
    DISCONNECTED   = 'disconnected'
    CONNECTING     = 'connecting'
    AWAITING_LOGIN = 'awaiting_login'
    LOGGED_IN      = 'logged_in'
    CONNECTED      = 'connected'
    BACKOFF        = 'backoff'
    CLOSING        = 'closing'
    STOPPED        = 'stopped'

S = eLinkState

# STOPPED is terminal.  Anything may move to STOPPED or DISCONNECTED.
_TRANSITIONS: Final[dict[eLinkState, frozenset[eLinkState]]] = {
    S.DISCONNECTED:   frozenset({S.CONNECTING, S.BACKOFF}),
    S.CONNECTING:     frozenset({S.AWAITING_LOGIN, S.CONNECTED, S.BACKOFF}),
    S.AWAITING_LOGIN: frozenset({S.LOGGED_IN, S.CLOSING, S.BACKOFF}),
    S.LOGGED_IN:      frozenset({S.CLOSING, S.BACKOFF}),
    S.CONNECTED:      frozenset({S.CLOSING, S.BACKOFF}),
    S.BACKOFF:        frozenset({S.CONNECTING}),
    S.CLOSING:        frozenset({S.BACKOFF}),
    S.STOPPED:        frozenset(),
}

class cStateMachine:
    def __init__(self, Name: str, InitialState: eLinkState = S.DISCONNECTED):
        self.Name  = Name
        self.State = InitialState

    def can_transition(self, To: eLinkState) -> bool:
        if self.State is S.STOPPED:
            return False

        if To in (S.STOPPED, S.DISCONNECTED):
            return True

        return To in _TRANSITIONS[self.State]

    def transition(self, To: eLinkState) -> bool:
        if not self.can_transition(To):
            logger.debug('%s: ignoring transition %s -> %s', self.Name, self.State.value, To.value)
            return False

        if To is not self.State:
            logger.debug('%s: %s -> %s', self.Name, self.State.value, To.value)

        self.State = To
        return True

    @property
    def stopped(self) -> bool:
        return self.State is S.STOPPED

    def __repr__(self) -> str:
        return f'{self.__class__.__name__}({self.Name}={self.State.value})'

@dataclass
class cReconnectState:
    initial_delay:  float
    max_delay:      float
    backoff_factor: float
    current_delay:  float = 0.0
    attempt_count:  int = 0

    def __post_init__(self) -> None:
        self.current_delay = self.initial_delay

    def failed(self) -> float:
        """Record a failed attempt and return the delay before the next one."""
        self.attempt_count += 1
        self.current_delay = min(self.current_delay * self.backoff_factor, self.max_delay)
        return self.current_delay

    def reset(self) -> None:
        self.current_delay = self.initial_delay
        self.attempt_count = 0
