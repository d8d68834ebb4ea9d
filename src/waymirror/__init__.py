"""
waymirror: Wayback Machine Site Mirror

A utility for retrieving every recorded capture of a site from the Internet
Archive's Wayback Machine and downloading the archived bytes into a mirrored,
resumable file tree for offline use.
"""

__version__ = "2.3.2"
__author__ = "waymirror Project"
__description__ = "Wayback Machine Site Mirror"
