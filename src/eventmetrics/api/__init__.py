"""HTTP surface for job submission, status polling and page reports."""
