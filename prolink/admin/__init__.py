# -*- coding: utf-8 -*-
"""Administrator overrides of the relationship lifecycle."""
