"""Remote command documents, dispatch and the executors built on them."""
