# Copyright (C) 2025 Gil Benezer
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
Builtin Scenes
==============

Ready-made models used by the benchmarks and tests.

>>> from bqsim.systems.builtin import create_planar_hand_model, PLANAR_HAND_Q0_DICT
"""

from .allegro_hand import ALLEGRO_Q0_DICT, create_allegro_hand_model, create_allegro_hand_scene
from .planar_hand import PLANAR_HAND_Q0_DICT, create_planar_hand_model, create_planar_hand_scene

__all__ = [
    "ALLEGRO_Q0_DICT",
    "create_allegro_hand_model",
    "create_allegro_hand_scene",
    "PLANAR_HAND_Q0_DICT",
    "create_planar_hand_model",
    "create_planar_hand_scene",
]
