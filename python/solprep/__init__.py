'''Solution enclave packaging: sign Gramine manifests and store their measurements'''

__version__ = '0.4.0'
