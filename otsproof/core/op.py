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

"""Commitment operations

Each op maps a message to a result, and is identified on the wire by a single
tag byte. Ops are values: two ops with the same tag and argument are equal and
hash the same, whichever way they were constructed.
"""

import binascii
import functools
import hashlib

from Cryptodome.Hash import RIPEMD160, keccak

from otsproof.core.serialize import DeserializationError

class MsgValueError(ValueError):
    """Message can't be used with an operation"""

class MsgTooLongError(MsgValueError):
    """Message is longer than the op accepts; the op was not applied"""

class ResultTooLongError(MsgValueError):
    """Op was applied, but its result is longer than allowed"""

class EmptyMsgError(MsgValueError):
    """Op can't be applied to an empty message"""

class OpArgValueError(ValueError):
    """Invalid argument for a binary op, such as an empty or over-long one"""

class UnknownOpTagError(DeserializationError):
    """No op is registered for the tag that was read"""

    def __init__(self, tag):
        self.tag = tag
        super().__init__("Unknown operation tag 0x%02x" % tag[0])


@functools.total_ordering
class Op:
    """Operation in a timestamp proof

    Subclasses implement _do_op_call(); calling the op wraps it with the
    message and result length checks.
    """
    __slots__ = []

    SUBCLS_BY_TAG = {}
    """Op classes by tag byte, filled in by _register_op()"""

    # Together these cap the memory needed to walk any single path of a proof.
    MAX_MSG_LENGTH = 4096
    MAX_RESULT_LENGTH = 4096

    def _key(self):
        return (self.TAG, b'')

    def __eq__(self, other):
        if not isinstance(other, Op):
            return NotImplemented
        return self._key() == other._key()

    def __lt__(self, other):
        if not isinstance(other, Op):
            return NotImplemented
        return self._key() < other._key()

    def __hash__(self):
        return hash(self._key())

    def __repr__(self):
        return '%s()' % self.__class__.__name__

    def __str__(self):
        return self.TAG_NAME

    def _do_op_call(self, msg):
        raise NotImplementedError

    def __call__(self, msg):
        """Apply the op to msg

        The length of msg is checked before the op runs, the length of the
        result afterwards.
        """
        if not isinstance(msg, bytes):
            raise TypeError("Expected message to be bytes; got %r" % msg.__class__)

        if len(msg) > self.MAX_MSG_LENGTH:
            raise MsgTooLongError("Message too long; %d > %d" % (len(msg), self.MAX_MSG_LENGTH))

        r = self._do_op_call(msg)

        # an empty result could lead straight back to an earlier message
        assert len(r)

        if len(r) > self.MAX_RESULT_LENGTH:
            raise ResultTooLongError("Result too long; %d > %d" % (len(r), self.MAX_RESULT_LENGTH))
        return r

    @classmethod
    def _register_op(cls, subcls):
        """Class decorator adding subcls to the tag table of cls and its bases"""
        for klass in cls.__mro__:
            if 'SUBCLS_BY_TAG' in klass.__dict__:
                klass.SUBCLS_BY_TAG[subcls.TAG] = subcls
        return subcls

    def serialize(self, ctx):
        ctx.write_bytes(self.TAG)

    @classmethod
    def _read_op(cls, ctx):
        return cls()

    @classmethod
    def deserialize_from_tag(cls, ctx, tag):
        """Deserialize the rest of an op whose tag has already been read

        Only tags registered on cls are accepted, so CryptOp.deserialize()
        won't return an append.
        """
        try:
            subcls = cls.SUBCLS_BY_TAG[tag]
        except KeyError:
            raise UnknownOpTagError(tag) from None
        return subcls._read_op(ctx)

    @classmethod
    def deserialize(cls, ctx):
        return cls.deserialize_from_tag(ctx, ctx.read_bytes(1))


class UnaryOp(Op):
    """Ops without an argument"""
    __slots__ = []
    SUBCLS_BY_TAG = {}


class BinaryOp(Op):
    """Ops taking a single, non-empty, bytes argument"""
    __slots__ = ['__arg']
    SUBCLS_BY_TAG = {}

    def __init__(self, arg):
        if not isinstance(arg, bytes):
            raise TypeError("arg must be bytes")
        elif not arg:
            raise OpArgValueError("%s arg can't be empty" % self.__class__.__name__)
        elif len(arg) > self.MAX_RESULT_LENGTH:
            raise OpArgValueError("%s arg too long: %d > %d" % (self.__class__.__name__, len(arg), self.MAX_RESULT_LENGTH))
        self.__arg = arg

    @property
    def arg(self):
        return self.__arg

    def _key(self):
        return (self.TAG, self.__arg)

    def __repr__(self):
        return '%s(%r)' % (self.__class__.__name__, self.__arg)

    def __str__(self):
        return '%s %s' % (self.TAG_NAME, binascii.hexlify(self.__arg).decode('utf8'))

    def serialize(self, ctx):
        super().serialize(ctx)
        ctx.write_varbytes(self.__arg, self.MAX_RESULT_LENGTH)

    @classmethod
    def _read_op(cls, ctx):
        return cls(ctx.read_varbytes(cls.MAX_RESULT_LENGTH, min_len=1))


@BinaryOp._register_op
class OpAppend(BinaryOp):
    """Append the argument to the message"""
    TAG = b'\xf0'
    TAG_NAME = 'append'

    def _do_op_call(self, msg):
        return msg + self.arg

@BinaryOp._register_op
class OpPrepend(BinaryOp):
    """Prepend the argument to the message"""
    TAG = b'\xf1'
    TAG_NAME = 'prepend'

    def _do_op_call(self, msg):
        return self.arg + msg


@UnaryOp._register_op
class OpReverse(UnaryOp):
    TAG = b'\xf2'
    TAG_NAME = 'reverse'

    def _do_op_call(self, msg):
        if not msg:
            raise EmptyMsgError("Can't reverse an empty message")
        return msg[::-1]

@UnaryOp._register_op
class OpHexlify(UnaryOp):
    """Lower-case hex encoding of the message"""
    TAG = b'\xf3'
    TAG_NAME = 'hexlify'

    # the result is twice as long as the message
    MAX_MSG_LENGTH = UnaryOp.MAX_RESULT_LENGTH // 2

    def _do_op_call(self, msg):
        if not msg:
            raise EmptyMsgError("Can't hexlify an empty message")
        return binascii.hexlify(msg)


class CryptOp(UnaryOp):
    """Hash functions

    The result has a fixed length, DIGEST_LENGTH, whatever the message. Only
    these ops can also digest a stream with hash_fd().
    """
    __slots__ = []
    SUBCLS_BY_TAG = {}

    HASHLIB_NAME = None
    DIGEST_LENGTH = None

    def _new_hasher(self):
        return hashlib.new(self.HASHLIB_NAME)

    def _do_op_call(self, msg):
        hasher = self._new_hasher()
        hasher.update(msg)
        r = hasher.digest()
        assert len(r) == self.DIGEST_LENGTH
        return r

    def hash_fd(self, fd):
        """Digest everything readable from fd

        Read in 1MiB chunks; no message length limit applies.
        """
        hasher = self._new_hasher()
        for chunk in iter(lambda: fd.read(2**20), b''):
            hasher.update(chunk)
        return hasher.digest()


@CryptOp._register_op
class OpSHA1(CryptOp):
    TAG = b'\x02'
    TAG_NAME = 'sha1'
    HASHLIB_NAME = 'sha1'
    DIGEST_LENGTH = 20

@CryptOp._register_op
class OpRIPEMD160(CryptOp):
    TAG = b'\x03'
    TAG_NAME = 'ripemd160'
    DIGEST_LENGTH = 20

    # hashlib only has ripemd160 when OpenSSL's legacy provider is loaded
    def _new_hasher(self):
        return RIPEMD160.new()

@CryptOp._register_op
class OpSHA256(CryptOp):
    TAG = b'\x08'
    TAG_NAME = 'sha256'
    HASHLIB_NAME = 'sha256'
    DIGEST_LENGTH = 32

@CryptOp._register_op
class OpKECCAK256(CryptOp):
    """Keccak-256 with the pre-standard padding, as used by Ethereum; not SHA3-256"""
    TAG = b'\x67'
    TAG_NAME = 'keccak256'
    DIGEST_LENGTH = 32

    def _new_hasher(self):
        return keccak.new(digest_bits=256)
