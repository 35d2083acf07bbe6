# Schemas package for FastAPI validation
from .validation import *
