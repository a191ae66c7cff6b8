# Copyright 2025 Gowtham Rao <rao@ohdsi.org>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Declares the shape of a Study Record as a closed set of Pydantic models.

Every section (and every nested group inside a section) is its own model.
Field defaults here are the zero values of the record; labels, required
flags, multiline hints and select choices travel as field metadata so that
validation and any rendering layer read them from one place.
"""

from collections.abc import Iterator
from enum import Enum
from typing import Any, get_args, get_origin

from pydantic import BaseModel, Field

from .models import DocumentType, StoredFile

EDC_METHOD = "Electronic Data Capture (EDC)"
ON_SITE_MONITORING = "On-Site"

# Sections whose fields are sent to the parsing service as the field taxonomy.
EXTRACTION_SECTIONS = (
    "study_identification",
    "study_overview",
    "endpoints_objectives",
    "target_population",
    "study_treatments",
)


def _text(
    label: str,
    *,
    required: bool = False,
    multiline: bool = False,
    choices: tuple[str, ...] = (),
    default: str = "",
) -> Any:
    extra: dict[str, Any] = {"required": required, "multiline": multiline}
    if choices:
        extra["choices"] = list(choices)
    return Field(default=default, title=label, json_schema_extra=extra)


def _flag(label: str, *, default: bool = False, required: bool = False) -> Any:
    return Field(default=default, title=label, json_schema_extra={"required": required})


def _rows(label: str) -> Any:
    # One empty row so a repeatable field always renders at least one input.
    return Field(default_factory=lambda: [""], title=label)


def _files(label: str) -> Any:
    return Field(default_factory=list, title=label)


class StudyIdentification(BaseModel):
    protocol_number: str = _text("Protocol Number", required=True)
    alternate_study_identifiers: str = _text("Alternate Study Identifiers")
    version_number_date: str = _text("Version Number and Date", required=True)
    ind_number: str = _text("IND Number")
    eudract_number: str = _text("EudraCT Number")
    sponsor_name: str = _text("Sponsor Name", required=True)


class StudyOverview(BaseModel):
    therapeutic_area: str = _text("Therapeutic Area", required=True)
    disease_indication: str = _text("Disease Indication", required=True)
    study_phase: str = _text("Study Phase", required=True)
    study_type: str = _text(
        "Study Type",
        required=True,
        choices=("Interventional", "Observational", "Expanded Access"),
    )
    trial_intervention_model: str = _text("Trial Intervention Model", required=True)
    control_method: str = _text("Control Method", required=True)
    trial_type: str = _text("Type of Trial", required=True)
    randomization: bool = _flag("Randomization", required=True)
    blinding: str = _text("Blinding", required=True)
    number_of_study_parts: str = _text("Number of Study Parts")
    stratification_factors: str = _text("Stratification Factors", multiline=True)
    participant_input_into_design: str = _text("Participant Input into Design")


class EndpointsObjectives(BaseModel):
    primary_objective_endpoints: str = _text(
        "Primary Objective/Endpoints", required=True, multiline=True
    )
    key_secondary_objectives_endpoints: str = _text(
        "Key Secondary Objectives/Endpoints", multiline=True
    )
    secondary_objectives_endpoints: str = _text(
        "Secondary Objectives/Endpoints", multiline=True
    )
    exploratory_objectives_endpoints: str = _text(
        "Exploratory Objectives/Endpoints", multiline=True
    )


class TargetPopulation(BaseModel):
    conditions_related_to_primary_disease: str = _text(
        "Conditions related to primary disease", required=True, multiline=True
    )
    tissue_sample_procedure_compliance: str = _text(
        "Tissue sample or Procedure compliance requirements", multiline=True
    )
    patient_performance_status: str = _text(
        "Patient performance status, Life expectancy, organ function "
        "and/or Lab parameter status",
        multiline=True,
    )
    concomitant_meds_washout: str = _text(
        "Concomitant meds / wash-out for existing therapies", multiline=True
    )
    comorbidities_infections: str = _text("Comorbidities & infections", multiline=True)
    reproductive_status_contraception: str = _text(
        "Reproductive status & contraception", multiline=True
    )
    eligibility_criteria: str = _text(
        "Eligibility criteria which make patient eligible for any of the treatments",
        multiline=True,
    )


class StudyTreatments(BaseModel):
    regimen_arm_1: str = _text("Regimen/Arm 1", multiline=True)
    regimen_arm_2: str = _text("Regimen/Arm 2", multiline=True)
    regimen_arm_3: str = _text("Regimen/Arm 3", multiline=True)
    concomitant_medications_allowed: str = _text(
        "Concomitant Medications Allowed", multiline=True
    )
    concomitant_medications_prohibited: str = _text(
        "Concomitant Medications Prohibited", multiline=True
    )


class StudyEndpoints(BaseModel):
    primary_endpoints: list[str] = _rows("Primary Endpoint(s)")
    secondary_endpoints: list[str] = _rows("Secondary Endpoint(s)")
    exploratory_endpoints: list[str] = _rows("Exploratory Endpoint(s)")


class StudyDuration(BaseModel):
    screening_period: str = _text("Screening Period")
    treatment_period: str = _text("Treatment Period")
    follow_up_period: str = _text("Follow-Up Period")


class StudyDesignDetails(BaseModel):
    number_of_arms: str = _text("Number of Arms")
    stratification_factors: str = _text("Stratification Factors")
    study_duration: StudyDuration = Field(default_factory=StudyDuration, title="Study Duration")
    sample_size: str = _text("Sample Size (Total)")
    number_of_sites: str = _text("Number of Sites (Planned)")


class SafetyAssessments(BaseModel):
    adverse_event_monitoring: str = _text("Adverse Event Monitoring")
    laboratory_tests: str = _text("Laboratory Tests")
    vital_signs: str = _text("Vital Signs")


class SurvivalAnalysis(BaseModel):
    overall_survival: str = _text("Overall Survival")
    progression_free_survival: str = _text("Progression-Free Survival")


class StudyAssessments(BaseModel):
    efficacy_assessments: list[str] = _rows("Efficacy Assessments")
    safety_assessments: SafetyAssessments = Field(
        default_factory=SafetyAssessments, title="Safety Assessments"
    )
    survival_analysis: SurvivalAnalysis = Field(
        default_factory=SurvivalAnalysis, title="Survival Analysis"
    )


class StatisticalConsiderations(BaseModel):
    statistical_hypothesis: str = _text("Statistical Hypothesis", multiline=True)
    sample_size_justification: str = _text("Sample Size Justification", multiline=True)
    interim_analysis_planned: bool = _flag("Interim Analysis Planned")
    handling_of_missing_data: str = _text("Handling of Missing Data")


class RegulatoryRequirements(BaseModel):
    countries_for_submission: list[str] = _rows("Countries for Submission")
    planned_start_date: str = _text("Planned Start Date")
    irb_approvals_required: bool = _flag("IRB Approvals Required", default=True)
    informed_consent_required: bool = _flag("Informed Consent Required", default=True)


class KeyContacts(BaseModel):
    sponsor_contact: str = _text("Sponsor Contact")
    cro_contact: str = _text("CRO Contact")


class StudyMonitoring(BaseModel):
    data_collection_method: str = _text(
        "Data Collection Method",
        choices=(EDC_METHOD, "Paper-Based CRF"),
        default=EDC_METHOD,
    )
    monitoring_frequency: str = _text("Monitoring Frequency")
    monitoring_type: str = _text(
        "Monitoring Type", choices=(ON_SITE_MONITORING, "Remote"), default=ON_SITE_MONITORING
    )
    key_contacts: KeyContacts = Field(default_factory=KeyContacts, title="Key Contacts")


class PrimaryDocuments(BaseModel):
    investigator_brochure: bool = _flag("Investigator Brochure")
    label: bool = _flag("Label")
    additional_reports: bool = _flag("Additional Safety/Efficacy Reports")


class SupportingDocuments(BaseModel):
    pharmacy_manual: bool = _flag("Pharmacy Manual")
    risk_management_guidelines: bool = _flag("Risk Management Guidelines")
    user_defined: bool = _flag("User Defined")


class UploadedFiles(BaseModel):
    investigator_brochure: list[StoredFile] = _files("Investigator Brochure")
    label: list[StoredFile] = _files("Label")
    additional_reports: list[StoredFile] = _files("Additional Safety/Efficacy Reports")
    pharmacy_manual: list[StoredFile] = _files("Pharmacy Manual")
    risk_management_guidelines: list[StoredFile] = _files("Risk Management Guidelines")
    user_defined: list[StoredFile] = _files("User Defined")
    study_design_outline: list[StoredFile] = _files("Study Design Outline Document")


class DocumentUploads(BaseModel):
    primary_documents: PrimaryDocuments = Field(
        default_factory=PrimaryDocuments, title="Primary Documents"
    )
    supporting_documents: SupportingDocuments = Field(
        default_factory=SupportingDocuments, title="Supporting Documents"
    )
    study_design_outline: bool = _flag("Study Design Outline Document")
    uploaded_files: UploadedFiles = Field(default_factory=UploadedFiles, title="Uploaded Files")


class StudyRecord(BaseModel):
    """The complete clinical-trial intake record."""

    study_identification: StudyIdentification = Field(
        default_factory=StudyIdentification, title="Study Identification"
    )
    study_overview: StudyOverview = Field(default_factory=StudyOverview, title="Study Overview")
    endpoints_objectives: EndpointsObjectives = Field(
        default_factory=EndpointsObjectives, title="Endpoints/Objectives"
    )
    target_population: TargetPopulation = Field(
        default_factory=TargetPopulation, title="Target Population"
    )
    study_treatments: StudyTreatments = Field(
        default_factory=StudyTreatments, title="Study Treatments"
    )
    study_endpoints: StudyEndpoints = Field(default_factory=StudyEndpoints, title="Study Endpoints")
    study_design_details: StudyDesignDetails = Field(
        default_factory=StudyDesignDetails, title="Study Design Details"
    )
    study_assessments: StudyAssessments = Field(
        default_factory=StudyAssessments, title="Study Assessments"
    )
    statistical_considerations: StatisticalConsiderations = Field(
        default_factory=StatisticalConsiderations, title="Statistical Considerations"
    )
    regulatory_requirements: RegulatoryRequirements = Field(
        default_factory=RegulatoryRequirements, title="Regulatory Requirements"
    )
    study_monitoring: StudyMonitoring = Field(
        default_factory=StudyMonitoring, title="Study Monitoring"
    )
    additional_comments: str = _text("Additional Comments", multiline=True)
    document_uploads: DocumentUploads = Field(
        default_factory=DocumentUploads, title="Document Uploads"
    )


# Where the "this document type is present" checkbox lives for each type.
DOCUMENT_FLAG_PATHS: dict[DocumentType, str] = {
    DocumentType.INVESTIGATOR_BROCHURE: "document_uploads.primary_documents.investigator_brochure",
    DocumentType.LABEL: "document_uploads.primary_documents.label",
    DocumentType.ADDITIONAL_REPORTS: "document_uploads.primary_documents.additional_reports",
    DocumentType.PHARMACY_MANUAL: "document_uploads.supporting_documents.pharmacy_manual",
    DocumentType.RISK_MANAGEMENT_GUIDELINES: (
        "document_uploads.supporting_documents.risk_management_guidelines"
    ),
    DocumentType.USER_DEFINED: "document_uploads.supporting_documents.user_defined",
    DocumentType.STUDY_DESIGN_OUTLINE: "document_uploads.study_design_outline",
}


class FieldKind(str, Enum):
    TEXT = "text"
    BOOLEAN = "boolean"
    TEXT_LIST = "text_list"
    FILE_LIST = "file_list"
    GROUP = "group"


class FieldSpec(BaseModel):
    """Flattened description of one field of the record."""

    path: str
    name: str
    label: str
    kind: FieldKind
    required: bool = False
    multiline: bool = False
    choices: list[str] = Field(default_factory=list)
    group: type[BaseModel] | None = None


def _kind_of(annotation: Any) -> FieldKind:
    if annotation is bool:
        return FieldKind.BOOLEAN
    if annotation is str:
        return FieldKind.TEXT
    if get_origin(annotation) is list:
        (item,) = get_args(annotation)
        return FieldKind.FILE_LIST if item is StoredFile else FieldKind.TEXT_LIST
    if isinstance(annotation, type) and issubclass(annotation, BaseModel):
        return FieldKind.GROUP
    raise TypeError(f"Unsupported field annotation: {annotation!r}")


def field_specs(model: type[BaseModel], prefix: str = "") -> list[FieldSpec]:
    """Describe the direct fields of `model`, in declaration order."""
    specs = []
    for name, info in model.model_fields.items():
        extra = info.json_schema_extra if isinstance(info.json_schema_extra, dict) else {}
        kind = _kind_of(info.annotation)
        specs.append(
            FieldSpec(
                path=f"{prefix}{name}",
                name=name,
                label=info.title or name,
                kind=kind,
                required=bool(extra.get("required", False)),
                multiline=bool(extra.get("multiline", False)),
                choices=list(extra.get("choices", [])),
                group=info.annotation if kind is FieldKind.GROUP else None,
            )
        )
    return specs


def iter_leaf_fields(model: type[BaseModel] = StudyRecord, prefix: str = "") -> Iterator[FieldSpec]:
    """Walk every non-group field of the record, depth first."""
    for spec in field_specs(model, prefix):
        if spec.kind is FieldKind.GROUP:
            yield from iter_leaf_fields(spec.group, f"{spec.path}.")
        else:
            yield spec


def resolve_field(path: str) -> FieldSpec:
    """Look up the field at a dotted path such as ``study_overview.blinding``.

    Raises:
        KeyError: If no such field exists in the record.
    """
    model: type[BaseModel] | None = StudyRecord
    prefix = ""
    spec = None
    for part in path.split("."):
        if model is None:
            raise KeyError(path)
        by_name = {s.name: s for s in field_specs(model, prefix)}
        if part not in by_name:
            raise KeyError(path)
        spec = by_name[part]
        model = spec.group
        prefix = f"{spec.path}."
    if spec is None:
        raise KeyError(path)
    return spec


def section_model(section: str) -> type[BaseModel] | None:
    """Return the model of a top-level section, or None if it is not a group."""
    info = StudyRecord.model_fields.get(section)
    if info is None or _kind_of(info.annotation) is not FieldKind.GROUP:
        return None
    return info.annotation


def build_field_taxonomy() -> dict[str, list[str]]:
    """List the field names the parsing service should try to fill, per section."""
    return {
        section: list(section_model(section).model_fields)
        for section in EXTRACTION_SECTIONS
    }
