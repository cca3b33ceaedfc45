from .body import Body, FixedBody
from .joint import Joint
from .model import Model
