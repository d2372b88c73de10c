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


class BridgeError(Exception):
    pass

class LinkConnectionError(BridgeError, ConnectionError):
    """Transport-level failure on the cluster or radio link.  Recovered by reconnect/backoff."""

class ProtocolError(BridgeError, ValueError):
    """A line or response did not parse as expected.  The unit is logged and skipped."""

class EnrichmentError(BridgeError):
    """Lookup service failure or timeout.  Spots fall back to unenriched defaults."""

class ConfigurationError(BridgeError):
    """Required settings are missing or invalid.  Fatal at startup."""
