# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
vistra training infrastructure package.

Subsystems:
  - triggers: predicates over TrainingState (several_iteration, max_iteration,
    every_epoch, max_epoch)
  - scheduler: constant / step / poly learning-rate schedules
  - optimizer: SGD update rule
  - metrics: Top-k validation methods and step metrics
  - checkpoint: atomic per-iteration checkpoint save/load
  - engine: LocalOptimizer control loop and config-driven runner
"""
