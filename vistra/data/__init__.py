# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
vistra data streaming package.

  - source: DataSource with looped and bounded modes, image-folder indexing
  - transforms: typed, composable preprocessing stages
  - assembler: worker pool turning a source into fixed-size tensor batches
"""
