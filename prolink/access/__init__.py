# -*- coding: utf-8 -*-
"""Access checks for professionals reading client data."""
