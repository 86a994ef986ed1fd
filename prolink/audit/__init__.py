# -*- coding: utf-8 -*-
"""Append-only permission audit log."""
