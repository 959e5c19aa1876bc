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

"""Consensus-critical code

Everything under otsproof.core has the property that changes to it may break
timestamp validation in non-backwards-compatible ways that are difficult to
recover from. Proofs serialized by one version must deserialize to the same
tree in every other version.
"""
