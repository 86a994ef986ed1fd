# -*- coding: utf-8 -*-
"""Named permission sets administrators apply to relationships."""
