from typing import Sequence, Union

import numpy as np

ArrayLike = Union[Sequence[float], np.ndarray]
