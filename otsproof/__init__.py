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

"""Timestamp proofs: operations, attestations and the proof tree"""

__version__ = '0.1.0'
