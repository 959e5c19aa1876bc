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

"""Time attestations

Only the parts needed to carry attestations around inside a proof live here:
serialization, equality and ordering. Deciding whether an attestation should
be trusted is up to the caller.
"""

import functools

import otsproof.core.serialize

@functools.total_ordering
class TimeAttestation:
    """Claim that a message existed at some point in time

    On the wire an attestation is an 8 byte tag followed by its payload as
    varbytes, so readers can skip attestation types they don't know about.
    """

    TAG = None
    TAG_SIZE = 8

    MAX_PAYLOAD_SIZE = 8192

    def _value(self):
        raise NotImplementedError

    def _key(self):
        # tag first, so different kinds of attestation never interleave
        return (self.TAG, self._value())

    def __eq__(self, other):
        if not isinstance(other, TimeAttestation):
            return NotImplemented
        return self.__class__ is other.__class__ and self._key() == other._key()

    def __lt__(self, other):
        if not isinstance(other, TimeAttestation):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self):
        return hash(self._key())

    def __repr__(self):
        return '%s(%r)' % (self.__class__.__name__, self._value())

    def _serialize_payload(self, ctx):
        raise NotImplementedError

    def serialize(self, ctx):
        ctx.write_bytes(self.TAG)

        payload_ctx = otsproof.core.serialize.BytesSerializationContext()
        self._serialize_payload(payload_ctx)
        ctx.write_varbytes(payload_ctx.getbytes(), self.MAX_PAYLOAD_SIZE)

    @classmethod
    def deserialize(cls, ctx):
        tag = ctx.read_bytes(cls.TAG_SIZE)
        payload = ctx.read_varbytes(cls.MAX_PAYLOAD_SIZE)

        try:
            attestation_cls = ATTESTATION_CLASSES_BY_TAG[tag]
        except KeyError:
            return UnknownAttestation(tag, payload)

        payload_ctx = otsproof.core.serialize.BytesDeserializationContext(payload)
        r = attestation_cls._deserialize_payload(payload_ctx)
        payload_ctx.assert_eof()
        return r

class UnknownAttestation(TimeAttestation):
    """Attestation of a type this library doesn't understand

    Kept as the raw tag and payload, so it is written back out unchanged.
    """

    def __init__(self, tag, payload):
        if not isinstance(tag, bytes):
            raise TypeError("tag must be bytes instance; got %r" % tag.__class__)
        elif len(tag) != self.TAG_SIZE:
            raise ValueError("tag must be exactly %d bytes long; got %d" % (self.TAG_SIZE, len(tag)))

        if not isinstance(payload, bytes):
            raise TypeError("payload must be bytes instance; got %r" % payload.__class__)
        elif len(payload) > self.MAX_PAYLOAD_SIZE:
            raise ValueError("payload must be <= %d bytes long; got %d" % (self.MAX_PAYLOAD_SIZE, len(payload)))

        self.TAG = tag
        self.payload = payload

    def _value(self):
        return self.payload

    def __repr__(self):
        return 'UnknownAttestation(%r, %r)' % (self.TAG, self.payload)

    def _serialize_payload(self, ctx):
        # already the complete payload, no length prefix of its own
        ctx.write_bytes(self.payload)

class PendingAttestation(TimeAttestation):
    """Submitted for attestation; more can be learned later from the URI"""

    TAG = bytes.fromhex('83dfe30d2ef90c8e')

    MAX_URI_LENGTH = 1000

    # No query strings, fragments, percent-encoding or userinfo.
    ALLOWED_URI_CHARS = b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-._/:"

    @classmethod
    def check_uri(cls, uri):
        """Raise ValueError unless uri, as bytes, is acceptable"""
        if len(uri) > cls.MAX_URI_LENGTH:
            raise ValueError("URI exceeds maximum length")
        bad_chars = set(uri).difference(cls.ALLOWED_URI_CHARS)
        if bad_chars:
            raise ValueError("URI contains invalid character %r" % bytes([min(bad_chars)]))

    def __init__(self, uri):
        if not isinstance(uri, str):
            raise TypeError("URI must be a string")
        self.check_uri(uri.encode())
        self.uri = uri

    def _value(self):
        return self.uri

    def _serialize_payload(self, ctx):
        ctx.write_varbytes(self.uri.encode(), self.MAX_URI_LENGTH)

    @classmethod
    def _deserialize_payload(cls, ctx):
        utf8_uri = ctx.read_varbytes(cls.MAX_URI_LENGTH)
        try:
            cls.check_uri(utf8_uri)
        except ValueError as exp:
            raise otsproof.core.serialize.DeserializationError("Invalid URI: %r" % exp) from exp
        return cls(utf8_uri.decode())

class BitcoinBlockHeaderAttestation(TimeAttestation):
    """The message is the merkle root of the Bitcoin block at this height"""

    TAG = bytes.fromhex('0588960d73d71901')

    def __init__(self, height):
        if not isinstance(height, int):
            raise TypeError("height must be an int; got %r" % height.__class__)
        elif height < 0:
            raise ValueError("height must be non-negative; got %d" % height)
        self.height = height

    def _value(self):
        return self.height

    def _serialize_payload(self, ctx):
        ctx.write_varuint(self.height)

    @classmethod
    def _deserialize_payload(cls, ctx):
        return cls(ctx.read_varuint())

ATTESTATION_CLASSES_BY_TAG = {attestation_cls.TAG: attestation_cls
                              for attestation_cls in (PendingAttestation, BitcoinBlockHeaderAttestation)}
