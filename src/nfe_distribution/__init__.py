"""
nfe_distribution — client for the NF-e distribution web service (NFeDistribuicaoDFe).

Reads a PKCS#12 identity, signs distDFeInt requests with an enveloped
XML-DSig signature, sends them over mutual TLS and decodes the
compressed document batches the service returns.

Built on Railway-Oriented Programming (ROP) for explicit, composable,
functional error handling.
"""

__version__ = "0.1.0"
