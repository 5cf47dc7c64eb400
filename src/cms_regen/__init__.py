"""
CMS Regen - billing-gated AI content generation and publishing for Webflow CMS
"""
import os

# Prevent LiteLLM from importing proxy modules we don't need
os.environ.setdefault('LITELLM_DISABLE_PROXY', '1')

__version__ = "0.1.0"
