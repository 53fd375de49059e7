"""ZeroVault Meta information.
   ZeroVault stores client-encrypted files behind self-contained capability links.
"""
__title__ = 'zerovault'
__description__ = (
   'ZeroVault stores client-encrypted files behind '
   'self-contained capability links.'
)
__version__ = '0.3.0'
__copyright__ = 'Copyright (c) 2026 ZeroVault Contributors'
__author__ = 'ZeroVault Contributors'
__author_email__ = 'maintainers@zerovault.dev'
__license__ = 'Apache-2.0'
__url__ = 'https://github.com/zerovault/zerovault'
