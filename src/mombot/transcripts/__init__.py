"""Transcript pipeline -- WebVTT parsing, meeting normalization, and
discovery of a meeting's transcript through Microsoft Graph.
"""
