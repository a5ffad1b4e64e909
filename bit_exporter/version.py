"""Bit Exporter Meta information.
   Bit Exporter exports (and optionally decrypts) a vault
   from a Bitwarden-compatible server.
"""
__title__ = 'bit_exporter'
__description__ = (
   'Exports records from a Bitwarden-compatible server '
   'and optionally decrypts them.'
)
__version__ = '0.3.0'
__author__ = 'Bit Exporter contributors'
__license__ = 'Apache-2.0'
