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

import binascii
import logging

from bitcoin.core import b2x, b2lx

from otsproof.core.op import Op, OpSHA256, OpAppend, OpPrepend, MsgValueError, MsgTooLongError
from otsproof.core.notary import TimeAttestation, BitcoinBlockHeaderAttestation

import otsproof.core.serialize

class MsgMismatchError(ValueError):
    """Two timestamps, or a timestamp and an op result, are for different messages"""

class OpSet(dict):
    """Set of operations

    Maps each op to the timestamp for the result of applying that op to the
    parent message.
    """
    __slots__ = ['__msg', '__make_timestamp']
    def __init__(self, msg, make_timestamp_func):
        self.__msg = msg
        self.__make_timestamp = make_timestamp_func

    def add(self, op):
        """Return the child for op, creating it first if needed"""
        try:
            return self[op]
        except KeyError:
            value = self.__make_timestamp(op)
            dict.__setitem__(self, op, value)
            return value

    def __setitem__(self, op, new_timestamp):
        if new_timestamp.msg != op(self.__msg):
            raise MsgMismatchError("Can't set %s result timestamp: %r is not the result of the op" % (op, new_timestamp))

        dict.__setitem__(self, op, new_timestamp)

class Timestamp:
    """Node of a proof tree

    Holds a message, the attestations made directly on it, and the ops leading
    to the nodes for derived messages.
    """
    __slots__ = ['__msg', 'attestations', 'ops']

    @property
    def msg(self):
        return self.__msg

    def __init__(self, msg):
        if not isinstance(msg, bytes):
            raise TypeError("Expected msg to be bytes; got %r" % msg.__class__)

        elif len(msg) > Op.MAX_MSG_LENGTH:
            raise MsgTooLongError("Message exceeds Op length limit; %d > %d" % (len(msg), Op.MAX_MSG_LENGTH))

        self.__msg = msg
        self.attestations = set()
        self.ops = OpSet(msg, lambda op: Timestamp(op(msg)))

    def __eq__(self, other):
        if isinstance(other, Timestamp):
            return (self.__msg == other.__msg and
                    self.attestations == other.attestations and
                    self.ops == other.ops)
        else:
            return False

    def __repr__(self):
        return 'Timestamp(<%s>)' % binascii.hexlify(self.__msg).decode('utf8')

    def merge(self, other):
        """Add all operations and attestations from another timestamp to this one

        Raises MsgMismatchError if the other timestamp isn't for the same message,
        or if any op in it leads to a timestamp for the wrong message. Either
        way this timestamp is left untouched.
        """
        if not isinstance(other, Timestamp):
            raise TypeError("Can only merge Timestamps together")

        if self.__msg != other.__msg:
            raise MsgMismatchError("Can't merge timestamps for different messages together")

        other._check_op_results()
        self._merge(other)

    def _check_op_results(self):
        for op, op_stamp in self.ops.items():
            if op_stamp.msg != op(self.__msg):
                raise MsgMismatchError("Timestamp for %s at %r is for a different message: %r" % (op, self, op_stamp))
            op_stamp._check_op_results()

    def _merge(self, other):
        logging.debug("Merging %d attestation(s) and %d op(s) into %r" % (len(other.attestations), len(other.ops), self))

        self.attestations.update(other.attestations)

        for other_op, other_op_stamp in other.ops.items():
            our_op_stamp = self.ops.add(other_op)
            our_op_stamp._merge(other_op_stamp)

    def serialize(self, ctx):
        """Serialize the tree below this timestamp

        The message itself isn't serialized; deserialize() has to be given it.
        """
        if not len(self.attestations) and not len(self.ops):
            # Asserts nothing, and can't be told apart from the start of an
            # attestation when read back.
            logging.debug("Serializing empty timestamp %r" % self)
            ctx.write_bytes(b'\x00')
            return

        items = [(b'\x00', attestation, None) for attestation in sorted(self.attestations)]
        items.extend((None, op, stamp) for op, stamp in sorted(self.ops.items(), key=lambda item: item[0]))

        for i, (prefix, item, stamp) in enumerate(items):
            if i < len(items) - 1:
                ctx.write_bytes(b'\xff')

            if prefix is not None:
                ctx.write_bytes(prefix)

            item.serialize(ctx)
            if stamp is not None:
                stamp.serialize(ctx)

    @classmethod
    def deserialize(cls, ctx, initial_msg, _recursion_limit=256):
        """Read the tree for initial_msg

        Messages aren't on the wire, so every child message is recomputed from
        initial_msg while reading. An op that can't be applied to its message
        is a DeserializationError.
        """
        if not _recursion_limit:
            raise otsproof.core.serialize.RecursionLimitError("Reached timestamp recursion depth limit while deserializing")

        self = cls(initial_msg)

        def do_tag_or_attestation(tag):
            if tag == b'\x00':
                attestation = TimeAttestation.deserialize(ctx)
                self.attestations.add(attestation)

            else:
                op = Op.deserialize_from_tag(ctx, tag)

                try:
                    result = op(initial_msg)
                except MsgValueError as exp:
                    raise otsproof.core.serialize.DeserializationError("Invalid timestamp; message invalid for op %r: %r" % (op, exp)) from exp

                stamp = Timestamp.deserialize(ctx, result, _recursion_limit=_recursion_limit-1)

                if op in self.ops:
                    logging.debug("Op %s repeated at %r; merging" % (op, self))
                    self.ops[op].merge(stamp)
                else:
                    self.ops[op] = stamp

        tag = ctx.read_bytes(1)
        while tag == b'\xff':
            do_tag_or_attestation(ctx.read_bytes(1))

            tag = ctx.read_bytes(1)

        do_tag_or_attestation(tag)

        return self

    def all_attestations(self):
        """Yield (msg, attestation) for every attestation in the tree"""
        for attestation in self.attestations:
            yield (self.msg, attestation)

        for op_stamp in self.ops.values():
            yield from op_stamp.all_attestations()

    def str_tree(self, indent=0, verbosity=0):
        """Convert to tree (for debugging)

        With verbosity > 0 the result of every op is shown as well.
        """

        def str_result(result):
            if verbosity > 0:
                return " == %s" % b2x(result)
            else:
                return ""

        r = ""
        for attestation in sorted(self.attestations):
            r += " "*indent + "verify %s" % str(attestation) + "\n"
            if attestation.__class__ == BitcoinBlockHeaderAttestation:
                r += " "*indent + "# Bitcoin block merkle root " + b2lx(self.msg) + "\n"

        if len(self.ops) > 1:
            for op, timestamp in sorted(self.ops.items()):
                r += " "*indent + " -> " + "%s" % str(op) + str_result(timestamp.msg) + "\n"
                r += timestamp.str_tree(indent+4, verbosity=verbosity)

        elif len(self.ops) > 0:
            op, timestamp = tuple(self.ops.items())[0]
            r += " "*indent + "%s" % str(op) + str_result(timestamp.msg) + "\n"
            r += timestamp.str_tree(indent, verbosity=verbosity)

        return r


def cat_then_unary_op(unary_op_cls, left, right):
    """Commit to left + right with unary_op_cls

    left and right may be Timestamps or bytes. Both get an edge to the shared
    node for left.msg + right.msg; the returned timestamp is for the unary op
    applied to it.
    """
    if not isinstance(left, Timestamp):
        left = Timestamp(left)

    if not isinstance(right, Timestamp):
        right = Timestamp(right)

    right_prepend_stamp = right.ops.add(OpPrepend(left.msg))
    left.ops[OpAppend(right.msg)] = right_prepend_stamp

    return right_prepend_stamp.ops.add(unary_op_cls())


def cat_sha256(left, right):
    return cat_then_unary_op(OpSHA256, left, right)


def cat_sha256d(left, right):
    sha256_timestamp = cat_sha256(left, right)
    return sha256_timestamp.ops.add(OpSHA256())


def make_merkle_tree(timestamps, binop=cat_sha256):
    """Join timestamps pairwise with binop() until one tip is left

    The timestamps are modified in place. An odd one out at any level is
    carried up unchanged. Returns the tip.
    """
    stamps = timestamps
    while True:
        stamps = iter(stamps)

        try:
            prev_stamp = next(stamps)
        except StopIteration:
            raise ValueError("Need at least one timestamp")

        next_stamps = []
        for stamp in stamps:
            if prev_stamp is not None:
                next_stamps.append(binop(prev_stamp, stamp))
                prev_stamp = None
            else:
                prev_stamp = stamp

        if not next_stamps:
            return prev_stamp

        if prev_stamp is not None:
            next_stamps.append(prev_stamp)

        stamps = next_stamps
