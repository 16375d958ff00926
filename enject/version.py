"""Enject Meta information.
   Enject keeps plaintext secrets out of .env files by injecting them
   into a child process environment at run time.
"""
__title__ = 'enject'
__description__ = (
   'Enject keeps secrets out of .env files, and out of AI context, '
   'by resolving en:// references from an encrypted local store.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2025 Enject contributors'
__author__ = 'Enject contributors'
__license__ = 'Apache-2.0'
