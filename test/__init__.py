# Import qgis first so that the correct sip API version is set.
# The core suites also run without QGIS; those needing it skip themselves.
try:
    import qgis  # pylint: disable=W0611  # NOQA
except ModuleNotFoundError:
    pass
