# -*- coding: utf-8 -*-
"""Users, password login and bearer tokens."""
