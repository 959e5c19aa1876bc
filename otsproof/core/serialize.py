# Copyright (C) 2016 The OpenTimestamps developers
#
# This file is part of otsproof.
#
# It is subject to the license terms in the LICENSE file found in the top-level
# directory of this distribution.
#
# No part of otsproof including this file, may be copied, modified,
# propagated, or distributed except according to the terms contained in the
# LICENSE file.

"""Byte-level reading and writing of proofs

Integers are unsigned LEB128 varuints; variable-length byte strings are a
varuint length followed by that many bytes.
"""

import binascii
import io
import itertools

class DeserializationError(Exception):
    """Base class for all errors encountered during deserialization"""

class TruncationError(DeserializationError):
    """Input ended in the middle of a value"""

class MalformedVarbytesError(DeserializationError):
    """A variable-length byte string could not be read"""

class VarbytesLengthError(MalformedVarbytesError):
    """Declared varbytes length is outside of the allowed bounds"""

class VarbytesTruncationError(MalformedVarbytesError, TruncationError):
    """Input ended before the declared varbytes length was read"""

class BadMagicError(DeserializationError):
    """Input doesn't start with the expected magic bytes"""

    def __init__(self, expected_magic, actual_magic):
        self.expected_magic = expected_magic
        self.actual_magic = actual_magic
        super().__init__('Expected magic bytes 0x%s, but got 0x%s instead' %
                         (binascii.hexlify(expected_magic).decode(),
                          binascii.hexlify(actual_magic).decode()))

class TrailingGarbageError(DeserializationError):
    """Bytes left over after a complete value was read"""

class RecursionLimitError(DeserializationError):
    """Nesting is deeper than the reader allows"""

class SerializerTypeError(TypeError):
    """Wrong type for specified serializer"""

class SerializerValueError(ValueError):
    """Value of the right type that can't be written"""


class SerializationContext:
    """Writer interface shared by the proof types"""

    def write_byte(self, value):
        raise NotImplementedError

    def write_bool(self, value):
        raise NotImplementedError

    def write_varuint(self, value):
        raise NotImplementedError

    def write_bytes(self, value):
        raise NotImplementedError

    def write_varbytes(self, value, max_len=None):
        raise NotImplementedError

class DeserializationContext:
    """Reader interface shared by the proof types"""

    def read_byte(self):
        raise NotImplementedError

    def read_bool(self):
        raise NotImplementedError

    def read_varuint(self):
        raise NotImplementedError

    def read_bytes(self, expected_length):
        raise NotImplementedError

    def read_varbytes(self, max_len, min_len=0):
        """Read a length-prefixed byte string of min_len to max_len bytes"""
        raise NotImplementedError

    def assert_magic(self, expected_magic):
        """Read len(expected_magic) bytes; BadMagicError if they differ"""
        raise NotImplementedError

    def assert_eof(self):
        """Raise TrailingGarbageError unless the input is exhausted

        Unlike the assert statement this runs with -O too.
        """
        raise NotImplementedError

class StreamSerializationContext(SerializationContext):
    def __init__(self, fd):
        """Serialize to a stream"""
        self.fd = fd

    def write_byte(self, value):
        if not isinstance(value, int):
            raise SerializerTypeError('Expected int; got %r' % value.__class__)
        elif not 0 <= value <= 0xff:
            raise SerializerValueError('Byte value out of range: %d' % value)
        self.fd.write(bytes([value]))

    def write_bool(self, value):
        if not isinstance(value, bool):
            raise SerializerTypeError('Expected bool; got %r' % value.__class__)
        self.write_byte(0xff if value else 0x00)

    def write_varuint(self, value):
        if value < 0:
            raise SerializerValueError('varuint must be non-negative; got %d' % value)

        while True:
            low, value = value & 0x7f, value >> 7
            if value:
                self.write_byte(low | 0x80)
            else:
                self.write_byte(low)
                break

    def write_bytes(self, value):
        if not isinstance(value, bytes):
            raise SerializerTypeError('Expected bytes; got %r' % value.__class__)
        self.fd.write(value)

    def write_varbytes(self, value, max_len=None):
        if max_len is not None and len(value) > max_len:
            raise SerializerValueError('varbytes max length exceeded; %d > %d' % (len(value), max_len))
        self.write_varuint(len(value))
        self.write_bytes(value)

class StreamDeserializationContext(DeserializationContext):
    def __init__(self, fd):
        """Deserialize from a stream"""
        self.fd = fd

    def fd_read(self, l):
        r = self.fd.read(l)
        if len(r) != l:
            raise TruncationError('Tried to read %d bytes but got only %d bytes' % (l, len(r)))
        return r

    def read_byte(self):
        return self.fd_read(1)[0]

    def read_bool(self):
        b = self.read_byte()
        if b not in (0x00, 0xff):
            raise DeserializationError('read_bool() expected 0xff or 0x00; got %d' % b)
        return b == 0xff

    def read_varuint(self):
        value = 0
        for shift in itertools.count(0, 7):
            b = self.read_byte()
            value |= (b & 0x7f) << shift
            if b < 0x80:
                return value

    def read_bytes(self, expected_length):
        return self.fd_read(expected_length)

    def read_varbytes(self, max_len, min_len=0):
        l = self.read_varuint()
        if not min_len <= l <= max_len:
            raise VarbytesLengthError('varbytes length %d outside of allowed range %d..%d' % (l, min_len, max_len))

        r = self.fd.read(l)
        if len(r) != l:
            raise VarbytesTruncationError('varbytes truncated; expected %d bytes, got %d' % (l, len(r)))
        return r

    def assert_magic(self, expected_magic):
        actual_magic = self.fd.read(len(expected_magic))
        if actual_magic != expected_magic:
            raise BadMagicError(expected_magic, actual_magic)

    def assert_eof(self):
        if self.fd.read(1):
            raise TrailingGarbageError("Trailing garbage found after end of deserialized data")

class BytesSerializationContext(StreamSerializationContext):
    def __init__(self):
        """Serialize to bytes"""
        super().__init__(io.BytesIO())

    def getbytes(self):
        """Return the bytes serialized to date"""
        return self.fd.getvalue()

class BytesDeserializationContext(StreamDeserializationContext):
    def __init__(self, buf):
        """Deserialize from bytes"""
        super().__init__(io.BytesIO(buf))
