# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
vistra image classification networks.

  - alexnet:      AlexNet with local response normalization (227x227 crops)
  - googlenetv1:  Inception v1 without auxiliary heads (224x224 crops)

Networks are picked by name through the registry, see `build_model`.
"""
