# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
vistra: streaming image preprocessing and single-node training for
ImageNet-style classifiers.
"""

__version__ = "0.1.0"
