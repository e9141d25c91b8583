"""flannel-registrar command line interface."""
